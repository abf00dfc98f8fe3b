"""forkwatch — keep a fork in step with its upstream and watch upstream tags."""

__version__ = "0.1.0"
