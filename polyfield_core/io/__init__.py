"""
I/O Module: Serial/TCP transports, per-role workers, connection manager.

- Every read is bounded by an explicit timeout
- At most one live connection per device role
- Operations on one role run sequentially
"""
