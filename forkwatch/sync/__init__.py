"""Upstream synchronization — the checks that keep a fork honest.

This package provides:
- Divergence classification and the Branch Sync Checker
- Tag diffing by dereferenced commit and the Tag Integrity Monitor
- Ref backends (GitHub API or local git) and tag sources
- The tag snapshot store used as a baseline between runs
"""
