# traveller

A small networking toolkit made of cooperating pieces:

- **Actors and devices** (`traveller.actor`, `traveller.device`): an
  `ActorFactory` hands out pooled `Actor` and `ActorEvent` objects and
  delivers an event to its receiver and to every subscriber of the `Channel`
  it names. A `Device` accepts events from any thread (`append_event`),
  drains them in `loop_once`, can run a looper on its own thread (`start`,
  `run_looper`, `stop`) and runs worker routines with `start_job`.
- **Event loop** (`traveller.eventloop`, `traveller.poller`): `EventLoop`
  dispatches readable/writable callbacks registered with `create_file_event`
  through a `SelectPoller`, and fires timers registered with
  `create_time_event`. A timer callback returns the delay in milliseconds
  until its next run, or `NOMORE` to be removed. `wait(fd, mask, ms)` waits
  for a single descriptor.
- **Socket helpers** (`traveller.anet`): connecting, listening, accepting,
  resolving and setting socket options; failures raise `AnetError`.
- **RESP-style server** (`traveller.protocol`, `traveller.server`,
  `traveller.services`): an incremental `RespParser`, the `encode_bulk`,
  `encode_array` and `encode_error` encoders, and a `RespServer` whose
  connections (`Snode`) dispatch array commands to named services.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Parsing and encoding

```python
from traveller.protocol import RespParser, encode_array

parser = RespParser()
messages = parser.feed(encode_array(["msg", "hello"]))
print(messages[0].argv)   # [b'msg', b'hello']
```

Data may arrive in any number of pieces; `feed` returns every message
completed so far and keeps partial input for the next call. Malformed input
raises `ProtocolError`, whose `messages` attribute holds the messages that
were complete before the error.

## Actors and channels

```python
from traveller.actor import ActorFactory, Channel, subscribe_channel

factory = ActorFactory()
actor = factory.new_actor()
actor.proc = lambda actor, args: print(args)

channel = Channel("news")
factory.append_channel(channel)
subscribe_channel(actor, channel)

event = factory.new_event()
event.channel = "news"
event.mail_args = ["hello"]
factory.process_event(event)   # prints ['hello']
```

## Timers

```python
from traveller.eventloop import EventLoop, NOMORE, TIME_EVENTS

loop = EventLoop()

def tick(loop, event_id, data):
    print("tick", data)
    return NOMORE

loop.create_time_event(100, tick, "once")
loop.process_events(TIME_EVENTS)   # sleeps until the timer is due, then fires it
```

## Serving

```python
from traveller.device import Device
from traveller.server import RespServer

server = RespServer()       # the built-in services are already registered
server.prepare(6380)        # listens on IPv4 and, where possible, IPv6
server.loop.run(Device())   # the device's actor events are drained each turn
```

Clients send commands as arrays of bulk strings; the first element names the
service, matched without regard to letter case. The built-in services are:

- `test`: replies with a fixed three-element array and tries to open a
  connection to 127.0.0.1:1091, sending it `close`.
- `msg`: logs the second argument at debug level.
- `close`: replies with a `msg` array and closes the connection once the
  reply is sent.

More can be added with `RespServer.register_service(name, proc)`, where
`proc` takes the `Snode` and answers with `add_reply_bulk`,
`add_reply_multi`, `add_reply_raw` or `add_reply_error`. Unknown commands
are answered with `-command not found`; a message of unknown type is
answered with `-Protocol error: Unrecognized type` and the connection is
closed after the reply.

## What is not included

- There is no command-line program; a server is started from Python code as
  shown above.
- There is no scripting layer. `RespServer` keeps a pool of
  `RequestContext` objects and `Snode` holds a list of them, but no built-in
  service creates, answers or completes script requests.