"""Durable prompt job queue.

Work is driven by repeated, stateless dispatch invocations that share one SQLite
file. The only serialization primitive is the conditional status update in
`QueueRepository.claim_job`; there are no in-process locks or worker threads.
"""
