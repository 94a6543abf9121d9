"""Change triggers that drive the sync orchestrator.

- queue: durable Redis-backed task queue and the CRUD-layer hook
- worker: drains the queue and dispatches tasks
- poller: periodic inbound pull for providers without push notifications
- scheduler: APScheduler jobs for polling and full reconciliation
- locks: per-provider Redis locks shared by the scheduler and the API
"""
