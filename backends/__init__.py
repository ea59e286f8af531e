"""Detection backends: on-device (local_backend) and Cloud Vision (remote_backend)."""
