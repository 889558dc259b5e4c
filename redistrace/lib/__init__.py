"""Internal building blocks shared by the redis instrumentation."""
