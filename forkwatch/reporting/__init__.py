"""Issue, pull request, and comment rendering plus issue deduplication."""
