"""Course reads, lesson structure and enrollment counters."""
