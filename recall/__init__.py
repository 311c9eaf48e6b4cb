"""
recall: document retrieval and tiered conversational memory for LLM assistants.
"""

__version__ = "0.1.0"
