"""
The stress commands themselves.

Each module here defines one or more functions marked with
`store_rpc_stress.stress_command`; see `store_rpc_stress.runner` for
the order in which they are registered.
"""

# Bucket names used by the commands.  No command may use another's bucket.
BUCKET_BOGUS = "stress_client_bogus_bucket"
BUCKET_INVALID = "buckets can't have spaces!"
BUCKET = "stress_client_bucket"
