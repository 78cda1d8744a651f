"""Server registry and capacity scheduling.

Provides the server schemas, SQLAlchemy model and repository, the
ServerRegistry admin facade, the CapacityScheduler (least-loaded selection
and per-server mutual exclusion), and the ServerHealthMonitor liveness poller.
"""
