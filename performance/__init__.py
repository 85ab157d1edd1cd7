"""
Performance testing package for the Interview Coach backend (Locust-based).

Contains the shared harness library (auth session, SSE client, metrics,
thresholds, execution profiles), the scenario locustfiles (smoke, load,
stress, spike, soak, concurrent-write race, search) and per-service
suites that together generate traffic against the user, question,
interview and feedback services.

Traffic goes straight at each service's base URL (see
:mod:`performance.config`); the Next.js frontend is **not** exercised.

Key Concepts Demonstrated:
- Execution profiles (constant, ramping, arrival-rate, shared-iterations)
  expressed as a single Locust ``LoadTestShape``
- Per-virtual-user authentication lifecycle with transparent 401 refresh
- Incremental Server-Sent-Events parsing over a streaming HTTP body
- Thresholds declared as YAML data and evaluated at the end of a run
"""
