"""
perfdive: summarize Jira and GitHub activity with a local LLM.
"""

__version__ = "0.4.0"
