"""Stage driver for the external automation agent.

The driver does not author specifications, plan tasks or execute them. It
submits one slash command per stage to an agent service, supervises the
submission until it reaches a terminal status, and appends every outcome to
an append-only checkpoint log so a partial run can be audited afterwards.

Stages always run in the same order::

    spec_creation -> task_planning -> task_execution

A stage is attempted only when the previous one succeeded. Dry-run mode
materializes the commands without contacting the agent.
"""
