"""Research source clients for docsmith.

Each module provides source clients that return a ``SourceResult``:
- qa: Stack Overflow, Stack Exchange network and Quora questions
- video: YouTube videos (quota tracked) and transcripts
- community: Reddit threads, developer forums and GitHub issues
- articles: DEV.to and CodeProject articles
- web: Product research queries through the web search chain
"""

from .articles import CodeProjectSearch, DevToSearch  # noqa: F401
from .base import SourceSearch  # noqa: F401
from .community import ForumsSearch, GitHubIssueSearch, RedditSearch  # noqa: F401
from .qa import QuoraSearch, StackExchangeSearch, StackOverflowSearch  # noqa: F401
from .video import YouTubeSearch  # noqa: F401
from .web import ProductWebSearch  # noqa: F401

__all__ = [
    "SourceSearch",
    "StackOverflowSearch",
    "StackExchangeSearch",
    "QuoraSearch",
    "YouTubeSearch",
    "RedditSearch",
    "ForumsSearch",
    "GitHubIssueSearch",
    "DevToSearch",
    "CodeProjectSearch",
    "ProductWebSearch",
]
