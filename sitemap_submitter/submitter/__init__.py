"""Search engine submission: provider clients, retry handling and orchestration."""
