"""Engine kernel: domain model, ports and run orchestration."""
