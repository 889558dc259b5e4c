# Buckets for redis call latency histograms, from 100us up to 30s. Calls that
# take longer than that land in the +Inf bucket.
default_latency_buckets = [
    0.000100,  # 100us
    0.000500,  # 500us
    0.001000,  # 1ms
    0.002500,  # 2.5ms
    0.005000,  # 5ms
    0.010000,  # 10ms
    0.025000,  # 25ms
    0.050000,  # 50ms
    0.100000,  # 100ms
    0.250000,  # 250ms
    0.500000,  # 500ms
    1.000000,  # 1s
    5.000000,  # 5s
    30.000000,  # 30s
]

# Buckets for value size histograms, from <=8 bytes to 4MB in 20 increments
# (8*2^i). Larger values go in the +Inf bucket.
default_size_start = 8
default_size_factor = 2
default_size_count = 20
default_size_buckets = [
    default_size_start * default_size_factor ** i for i in range(default_size_count)
]
