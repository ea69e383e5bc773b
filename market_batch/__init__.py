"""
market_batch -- savepoint-isolated batch execution.

Layers:
    domain/    frozen result DTOs and status enums (no I/O)
    tasks/     the BatchTask protocol, TaskRegistry and concrete tasks
    services/  BatchExecutor
"""
