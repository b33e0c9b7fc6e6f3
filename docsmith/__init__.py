"""docsmith - resilient multi-provider documentation research.

Gathers documentation, Q&A threads, videos and community posts about a
product from many providers, scores and deduplicates them, and runs LLM
completions through an ordered provider chain.
"""

__version__ = "0.1.0"

from docsmith.core.orchestrator import ResearchOrchestrator, ResearchReport
from docsmith.core.data_models import RetrievedItem, SourceType

__all__ = ["ResearchOrchestrator", "ResearchReport", "RetrievedItem", "SourceType", "__version__"]
