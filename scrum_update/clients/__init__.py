"""
Clients for external collaborators: the chat model and the Jira activity feed.
"""
