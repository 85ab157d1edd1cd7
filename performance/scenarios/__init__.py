"""
Scenario locustfiles.

Each module is a complete locustfile (plan, user class, load shape and
run hooks) and can be passed to ``locust -f`` directly, or selected
through :mod:`performance.locustfile` with ``SCENARIO=<module>``.
"""
