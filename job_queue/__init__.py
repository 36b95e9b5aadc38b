"""
Message Queue — Decouples SMS acceptance from delivery.

- Ingress PUBLISHES request messages to a partitioned topic
- Workers CONSUME them, dispatch, and PUBLISH response envelopes
- Supports Redis Streams (production) and in-memory asyncio.Queue (dev)
"""
