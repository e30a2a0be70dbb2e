"""
Metering proxy service package for Tollgate.

The proxy fronts named upstream endpoints, enforcing:
- Per-client sessions keyed by source address, evicted when idle
- Pay-as-you-go metering against a balance oracle
- Per-session token-bucket rate limiting

Structure:
- app.main: FastAPI app, routes, and lifespan wiring.
- app.dispatcher: Per-request pipeline (resolve, meter, throttle, forward).
- app.storage: Bucketed key-value stores (SQLite, Redis).
- app.endpoints: Endpoint records and the registry backed by the store.
- app.sessions: Session registry and idle sweeper.
- app.ratelimit: Token bucket.
- app.payments: Payment validator.
- app.adapters: HTTP clients for the balance oracle and upstreams.
"""
