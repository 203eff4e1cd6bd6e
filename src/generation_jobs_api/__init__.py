"""FastAPI adapter over the generation job readers and sweeps.

- read endpoints for UI pollers, scoped to the authenticated owner
- an SSE stream of lifecycle events per job
- internal sweep triggers guarded by a shared token

It must NOT be imported by `generation_jobs`.
"""
