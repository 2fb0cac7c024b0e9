"""stack-deploy - deployment automation for the docker monitoring stack.

Sequences ``docker compose`` calls for a fixed multi-service monitoring
stack (frontend, backend, PostgreSQL, Redis, Prometheus, Grafana,
Alertmanager, Loki): prerequisite checks, backup, image refresh, restart,
a bounded health-convergence wait and post-deployment smoke checks.

Packages:
    stackdeploy.core      Logging, errors and env-file loading
    stackdeploy.deploy    Config, runtime adapter, convergence loop, stages
    stackdeploy.cli       ``stackdeploy`` Typer application
"""

__version__ = "0.3.0"
