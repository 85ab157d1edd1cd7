"""
Shared harness library.

Everything here is scenario-agnostic: authentication sessions, the SSE
client, metric samples and thresholds, execution profiles and the
Locust plumbing (:mod:`performance.lib.plan`) that turns a scenario
plan into virtual users and a load shape.
"""
