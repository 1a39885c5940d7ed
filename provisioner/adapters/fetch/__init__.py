"""Artifact fetchers — atomic materialization of files and repositories."""

from provisioner.adapters.fetch.git import GitRepoFetcher
from provisioner.adapters.fetch.http import HttpFileFetcher

__all__ = ["GitRepoFetcher", "HttpFileFetcher"]
