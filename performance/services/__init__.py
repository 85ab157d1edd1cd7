"""
Per-service suites.

Each module drives one backend service with three executors running
side by side (an arrival-rate, a ramping and a constant executor), each
exercising a different behaviour of that service.  Like the scenario
modules they are complete locustfiles; select one through
:mod:`performance.locustfile` with ``SCENARIO=<module>``.

``SCENARIO_NAME`` pins every virtual user to one behaviour regardless
of the executor it was assigned to, which is handy when chasing a
regression in a single endpoint group.
"""
