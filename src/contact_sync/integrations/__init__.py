"""Bidirectional contact sync between the local store and external providers.

Layers, leaves first:
- providers/: one ProviderAdapter per external system (Google, Outlook, Notion)
- links / sync_log / routing / config_store: persistence services
- conflict: pure last-write-wins resolver
- orchestrator: push/pull decisions per (contact, provider, container)
- triggers/: task queue, worker, poller and scheduler that drive the orchestrator
"""
