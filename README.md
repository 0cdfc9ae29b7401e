# swimlist

Building blocks for keeping a membership list up to date in a distributed
system with the SWIM failure-detection protocol.

## Modules

- `swimlist.utility`: the SWIM formulas. These are `ping_target_probability`,
  `ping_target_probability_limes`, `failure_detection_duration`,
  `failure_detection_duration_limes`,
  `failure_detection_false_positive_probability`, `dissemination_periods` and
  `suspicion_timeout`. Durations are given as `datetime.timedelta`. The module
  also has:
  - `incarnation_less_than` and `incarnation_max`, which compare 16-bit
    incarnation numbers and cope with wraparound;
  - `cluster_sizes`, a generator of cluster sizes that counts up one by one
    to a cutoff and then doubles, always ending with the maximum;
  - `swap_delete`, which removes an item from a list in O(1).
- `swimlist.roundtriptime`: a `Tracker` that keeps a ring of observed
  round-trip times. It works out a smoothed percentile of them, kept between a
  minimum and a maximum. Its settings are exposed as a frozen `TrackerConfig`
  through the `config` property. Out-of-range options are clamped.
- `swimlist.scheduler`: a `Scheduler` that uses two background threads to
  drive a `Target` (an abstract base class). One thread runs each protocol
  period in this order:
  - a direct ping;
  - an indirect ping, after the tracker's current round-trip time;
  - the end of the protocol period, which also updates the tracker.

  The other thread requests the member list at startup and then once every
  `list_request_interval`. Errors raised by the target are logged and counted,
  and they do not stop the scheduler. A round-trip time tracker is required.
  `Scheduler` can be used as a context manager.
- `swimlist.metrics`: small thread-safe `Counter`, `Gauge` and `Histogram`
  types, `LabeledMetric` families and a `Registry`. The scheduler and the
  transports update the module-level metrics. `register_scheduler_metrics` and
  `register_transport_metrics` add those metrics to a registry.
- `swimlist.transport`: the `Transport` and `Target` interfaces and
  `TransportError`. It also has in-process transports for tests and
  simulations:
  - `Discard` drops everything;
  - `FailingTransport` always raises;
  - `Store` records every send;
  - `Unreliable` forwards only a share of sends;
  - `Memory` and `MemoryClient` queue datagrams until they are flushed.

  Addresses are `(host, port)` tuples. Errors raised by targets while flushing
  are collected into an `ExceptionGroup`.
- `swimlist.aead`: `seal` and `open_with_any`, AES-GCM encryption with a
  random nonce. `open_with_any` tries each key in turn and raises
  `DecryptionError` when none of them fits.
- `swimlist.udp`: `UDPClient` and `UDPServer`.
- `swimlist.tcp`: `TCPClient` and `TCPServer`. The TCP client opens one
  connection per datagram. It sends the encrypted payload length followed by
  the encrypted payload.

Clients encrypt with a single key. Servers try all of their keys in order,
so keys can be rotated one member at a time. Servers run in background
threads, and they can be used as context managers.
- `swimlist.addressing`: `resolve_advertise_address` and
  `resolve_bootstrap_members`. When no advertise address is given, the
  advertise address is the IP of the outgoing interface combined with the
  port of the bind address. If some bootstrap members cannot be resolved, all
  the failures are raised together as an `ExceptionGroup`.

## Installation

```
pip install swimlist
```

## Examples

Tracking round-trip times:

```python
from datetime import timedelta
from swimlist.roundtriptime import Tracker

tracker = Tracker(count=5, percentile=0.5, alpha=1.0)
for ms in (10, 20, 30, 40, 50):
    tracker.add_observed(timedelta(milliseconds=ms))
tracker.update_calculated()
print(tracker.calculated)  # 0:00:00.030000
```

Sending an encrypted datagram between two members:

```python
import os
from swimlist.transport import Target
from swimlist.udp import UDPClient, UDPServer

class Printer(Target):
    def dispatch_datagram(self, buffer):
        print(bytes(buffer))

key = os.urandom(32)
with UDPServer(None, Printer(), "localhost:0", 512, [key]) as server:
    UDPClient(512, key).send(server.addr(), b"hello")
```

For UDP, the maximum datagram length applies to the encrypted datagram, which
is `swimlist.aead.OVERHEAD` bytes longer than the payload.

## What this package does not do

This package does not include the membership list itself: there is no member
bookkeeping, message encoding, gossip dissemination or suspicion handling. You
provide a `scheduler.Target` and a `transport.Target` that implement them.
The package has no command-line program and no exporter for its metrics.

## Running the tests

```
pip install -e .[test]
pytest
```