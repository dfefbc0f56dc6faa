# svcharness

`harness` is a command line tool for a set of services described in a YAML
file. It can validate the file, start and stop services in dependency order,
and show their status. An executor daemon runs the services. `harness` talks
to that daemon over a TLS WebSocket at `127.0.0.1:9443`.

## Installation

```
pip install svcharness
```

## Configuration

The default configuration file is `services.yaml`. Use `-c/--config` to pick
another file. The option works before or after the command name.

```yaml
version: "1.0"
name: example
networks:
  local: {}
services:
  db:
    type: docker
    image: postgres
    network: local
    ports: ["5432:5432"]
  api:
    type: process
    binary: api-server
    args: ["--db", "${db.ip}:5432"]
    network: local
    dependencies: [db]
    env:
      LOG_LEVEL: "${LOG_LEVEL}"
    health_check:
      http: http://localhost:8080/health
      interval: 10
      timeout: 5
      retries: 3
    startup_timeout: 60
```

### Service types

- `type: docker` takes these fields:
  - `image`
  - `ports`: numbers, or `"host:container"` strings
  - `volumes`
  - `command` and `entrypoint`: a string or a list
- `type: process` takes these fields:
  - `binary`
  - `args`
  - `working_dir`
  - `user`

### Health checks

A `health_check` holds exactly one of:

- `http`: a URL
- `tcp`: a port, or a mapping with `port` and an optional `host`
- `command`: a command, with optional `args`

A health check may also set `interval`, `timeout` and `retries`. Their defaults are 10, 5 and 3.

### References

References have the form `${...}` inside service values:

- `${NAME}` reads an environment variable.
- `${service.ip}`, `${service.host}`, `${service.hostname}` and
  `${service.port}` read the address of a service that was started earlier in the same run.

## Commands

```
harness validate [--strict]
```

Checks the file for:

- circular dependencies
- host ports used by more than one service
- malformed health checks
- references to unknown services
- `.port` references to services with no ports
- unset environment variables
- unused or single-service networks

Errors make the command fail. Warnings do not. With `--strict`, unset environment variables count as errors.

```
harness start [SERVICE ...]
```

Starts the named services, or all services if none are named. Their
dependencies start first.

- For a service with a health check, the command waits until the daemon reports it as running, or until `startup_timeout` (60 s by default) runs out.
- If the daemon returns an error, the command stops starting the remaining services.
- When every service has started, the command prints the endpoints that can be inferred from the port mappings and health checks.

```
harness stop [SERVICE ...] [-f/--force] [-t/--timeout SECONDS]
```

Stops running services, or all running services if none are named. Dependents stop first.

- If other services depend on the ones being stopped, the command asks for confirmation. `--force` skips that question.
- `--force` also makes the command continue past failures.
- With `--timeout`, the command waits for each service to reach the stopped state, up to the given number of seconds.

```
harness status [-f/--format table|json] [-w/--watch] [-d/--detailed]
```

Prints one row per configured service. `--detailed` adds these columns:

- network address
- PID or container ID
- dependencies
- endpoints

`--watch` clears the screen and refreshes the output every 2 seconds.

```
harness daemon status
```

Reports whether the daemon can be reached. It exits with an error if the daemon cannot be reached.

```
harness env set KEY=VALUE ...
harness env get [NAME ...]
```

Sets environment variables in the daemon's process, or prints them. With no
names, `env get` prints all of them, sorted.

On any error, `harness` prints `Error: ...` and exits with status 1.

## TLS certificates

`svcharness.certificates` manages a self-signed ECDSA P-256 certificate for
`localhost` and `127.0.0.1`. The certificate is valid for 365 days. It is
stored as `certs/server.crt` and `certs/server.key` in the data directory
given by `default_data_dir()`, which is the per-user `harness` data directory.

- `ensure_valid_certificates()` creates the certificate if it is missing and fails if it has expired.
- `regenerate_certificates()` backs up the old files and writes new ones.
- `get_certificate_info()` describes the certificate's status and location.

The client trusts only this certificate.

## Library use

- `svcharness.config`:
  - `load_config` reads a YAML file.
  - `parse_config` builds a `Config` from data that is already parsed.
- `svcharness.dependencies`:
  - `topological_sort` returns the start-up order.
  - `reverse_topological_sort` returns the shutdown order.
  - `get_affected_services` returns the services that depend on the given ones.
- `svcharness.validate.validate_config` returns a `ValidationReport` without printing.
- `svcharness.protocol` defines the request and response messages and their JSON encoding.
- `svcharness.client.DaemonClient` sends those messages to a daemon. Use `connect`, or `connect_tls` for TLS.
- `svcharness.server.run_daemon(data_dir, port, state)` does two things:
  - It makes sure the certificates are usable.
  - It serves requests over TLS on `127.0.0.1` until cancelled.
  - `svcharness.handlers.handle_request` answers each request.
- `svcharness.status.render_table`, `basic_rows` and `detailed_rows` build the status tables.

## What this package does not do

- It includes no service manager. Nothing in it launches containers or processes, or runs health checks.
- `run_daemon` needs a `DaemonState` whose `service_manager` you supply. It must provide these coroutines:
  - `start_service`
  - `stop_service`
  - `get_service_status`
  - `list_services`
  - `get_service_info`
  - `run_health_checks`
- The package installs no command that starts the daemon.
- There is no command that regenerates certificates. Some messages mention `harness daemon regenerate-certs`, but that command does not exist. Call `svcharness.certificates.regenerate_certificates` instead.
- A `Shutdown` request is acknowledged but does not stop the server.