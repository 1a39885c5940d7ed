"""
Config patcher — idempotent edits to small text config files.

``apply_rule`` is a pure function over file content. Every rule is
written so that applying it to its own output changes nothing: the
marker check (append / insert_after) or per-token membership (rewrite)
turns a second application into a no-op.

``patch_file`` adds the I/O: read, fold the rules, and replace the file
atomically (temp file in the same directory, then rename) so a killed
process never leaves a half-written config behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.errors import PatchError
from provisioner.core.models.descriptor import (
    AppendRule,
    ConfigPatchRule,
    InsertAfterRule,
    RewriteRule,
)

logger = logging.getLogger(__name__)

_QUOTES = ('"', "'")


@dataclass
class PatchResult:
    """Outcome of folding a set of rules over one file."""

    path: Path | None = None
    original: str = ""
    content: str = ""
    applied: list[str] = field(default_factory=list)   # rule descriptions
    warnings: list[str] = field(default_factory=list)
    written: bool = False

    @property
    def changed(self) -> bool:
        return self.content != self.original


# ── Pure transformations ────────────────────────────────────────────


def apply_rule(rule: ConfigPatchRule, content: str) -> str:
    """Return ``content`` with ``rule`` applied (or unchanged if already applied)."""
    if isinstance(rule, AppendRule):
        return _append_if_absent(rule, content)
    if isinstance(rule, RewriteRule):
        return _anchored_rewrite(rule, content)
    if isinstance(rule, InsertAfterRule):
        return _insert_after(rule, content)
    raise TypeError(f"Unknown rule type: {type(rule).__name__}")


def apply_rules(rules: list[ConfigPatchRule] | tuple[ConfigPatchRule, ...], content: str) -> PatchResult:
    """Fold ``rules`` over ``content`` in order.

    Rules that could not find their anchor are reported as warnings; they
    are no-ops, never errors.
    """
    result = PatchResult(original=content, content=content)
    for rule in rules:
        before = result.content
        after = apply_rule(rule, before)
        if after != before:
            result.applied.append(describe_rule(rule))
        elif not _satisfied(rule, after):
            anchor = getattr(rule, "anchor", "")
            result.warnings.append(f"{describe_rule(rule)}: anchor {anchor!r} not found")
        result.content = after
    return result


def describe_rule(rule: ConfigPatchRule) -> str:
    if isinstance(rule, AppendRule):
        return f"append {rule.line!r}"
    if isinstance(rule, RewriteRule):
        return f"rewrite {rule.anchor} += {' '.join(rule.tokens)}"
    return f"insert {rule.line!r} after {rule.anchor!r}"


def _satisfied(rule: ConfigPatchRule, content: str) -> bool:
    return all(marker in content for marker in rule.markers())


def _append_if_absent(rule: AppendRule, content: str) -> str:
    if _satisfied(rule, content):
        return content
    if content and not content.endswith("\n"):
        content += "\n"
    return f"{content}{rule.line}\n"


def _anchored_rewrite(rule: RewriteRule, content: str) -> str:
    start = content.find(rule.anchor)
    if start < 0:
        return content

    span_start, span_end = _value_span(content, start + len(rule.anchor), rule.terminator)
    old_value = content[span_start:span_end]

    missing = [t for t in rule.tokens if t not in old_value]
    if not missing:
        return content

    addition = " ".join(missing)
    new_value = f"{old_value} {addition}" if old_value.strip() else addition
    return content[:span_start] + new_value + content[span_end:]


def _value_span(content: str, pos: int, terminator: str | None) -> tuple[int, int]:
    """Locate the value that starts at ``pos``.

    A quoted value keeps its quotes outside the span. Without quotes the
    span runs to ``terminator`` (when it occurs on the same line) or to the
    end of the line.
    """
    line_end = content.find("\n", pos)
    if line_end < 0:
        line_end = len(content)

    if pos < len(content) and content[pos] in _QUOTES:
        quote = content[pos]
        close = content.find(quote, pos + 1)
        if 0 <= close <= line_end:
            return pos + 1, close

    if terminator:
        end = content.find(terminator, pos, line_end)
        if end >= 0:
            return pos, end

    return pos, line_end


def _insert_after(rule: InsertAfterRule, content: str) -> str:
    if _satisfied(rule, content):
        return content

    lines = content.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if rule.anchor in line:
            if not line.endswith("\n"):
                lines[i] = line + "\n"
            lines.insert(i + 1, rule.line + "\n")
            return "".join(lines)
    return content


# ── File I/O ────────────────────────────────────────────────────────


def read_target(path: Path) -> str:
    """Read a config target as UTF-8 text.

    Raises:
        PatchError: If the file is missing, not a regular file, unreadable
            or not valid UTF-8.
    """
    try:
        st = os.stat(path)
    except FileNotFoundError as e:
        raise PatchError(f"Config target {path} does not exist") from e
    except OSError as e:
        raise PatchError(f"Cannot inspect {path}: {e.strerror or e}") from e

    if not stat.S_ISREG(st.st_mode):
        raise PatchError(f"Config target {path} is not a regular file")

    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise PatchError(f"Config target {path} is not UTF-8 text: {e}") from e
    except OSError as e:
        raise PatchError(f"Cannot read {path}: {e.strerror or e}") from e


def write_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` atomically, keeping its mode.

    The temp file lives in the same directory so the final rename never
    crosses a filesystem.
    """
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
        logger.debug("Wrote %s (%d bytes)", path, len(content))
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def patch_file(
    path: Path,
    rules: list[ConfigPatchRule] | tuple[ConfigPatchRule, ...],
    dry_run: bool = False,
) -> PatchResult:
    """Apply ``rules`` to the file at ``path``.

    Raises:
        PatchError: If the target cannot be read or written.
    """
    content = read_target(path)
    result = apply_rules(rules, content)
    result.path = path

    if result.changed and not dry_run:
        try:
            write_atomic(path, result.content)
        except OSError as e:
            raise PatchError(f"Cannot write {path}: {e.strerror or e}") from e
        result.written = True
        for desc in result.applied:
            logger.info("Patched %s: %s", path, desc)

    for warning in result.warnings:
        logger.warning("%s: %s", path, warning)

    return result
