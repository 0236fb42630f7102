# PATH: strategy/jobs/__init__.py
"""
Strategy jobs package.

Available entry points:
    python -m strategy.jobs.run_keeper --config keeper.yaml

NOTE: run_keeper is not imported here so importing the package has no side
effects. Import it directly when needed:

    from strategy.jobs.run_keeper import build_keeper
"""

__all__: list[str] = []
