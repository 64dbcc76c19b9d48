"""Dependency-aware task execution engine.

A workflow is a set of tasks keyed by step number, each with at most one
predecessor. The scheduler claims one queued task at a time, the resolver
decides whether its predecessor lets it run, the executor runs its job and
records the result, and the aggregator folds task states into the workflow's
status and final result, requeueing blocked tasks once nothing else can move.

Single process, SQLite-backed. There are no automatic retries and no timeout
for a running job: a job that hangs leaves its task `in_progress`.
"""
