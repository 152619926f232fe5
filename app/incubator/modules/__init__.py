"""
Entity modules live under this package.

Keep module boundaries clean: each module owns its models/service/routes,
while reusing platform primitives (auth, policy, scoping, audit, storage, DB session).
"""
