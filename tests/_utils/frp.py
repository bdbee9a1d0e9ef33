"""FRP config bodies and a file-backed fake systemctl for tests."""

from pathlib import Path

CLIENT_TOML = """\
serverAddr = "{addr}"
serverPort = {port}

[auth]
token = "{token}"

[[proxies]]
name = "ssh"
type = "tcp"
localIP = "127.0.0.1"
localPort = 22
remotePort = 6000
"""

SERVER_TOML = """\
bindPort = {port}

[auth]
token = "{token}"
"""

FAKE_SYSTEMCTL = """\
#!/bin/bash
STATE_DIR="{state_dir}"
cmd="$1"; shift
case "$cmd" in
  list-units)
    for f in "$STATE_DIR"/*.state; do
      [ -e "$f" ] || continue
      name=$(basename "$f" .state)
      state=$(cat "$f")
      prefix=""
      [ "$state" = "failed" ] && prefix="● "
      echo "$prefix$name.service loaded $state running MoonFRP $name"
    done
    ;;
  is-active)
    [ "$1" = "--quiet" ] && shift
    [ "$(cat "$STATE_DIR/$1.state" 2>/dev/null)" = "active" ]
    exit $?
    ;;
  start|stop|restart|reload)
    name="$1"
    echo "$cmd $name" >> "$STATE_DIR/calls.log"
    [ -f "$STATE_DIR/$name.delay" ] && sleep "$(cat "$STATE_DIR/$name.delay")"
    if [ -f "$STATE_DIR/$name.fail" ]; then
      cat "$STATE_DIR/$name.fail" >&2
      exit 1
    fi
    if [ "$cmd" = "stop" ]; then
      echo inactive > "$STATE_DIR/$name.state"
    else
      echo active > "$STATE_DIR/$name.state"
    fi
    ;;
  *)
    echo "Unknown command verb $cmd." >&2
    exit 1
    ;;
esac
"""


def client_toml(addr: str = "10.0.0.1", port: int = 7000, token: str = "supersecret") -> str:
    return CLIENT_TOML.format(addr=addr, port=port, token=token)


def server_toml(port: int = 7000, token: str = "serverpassword") -> str:
    return SERVER_TOML.format(port=port, token=token)


class FakeSystemd:
    """A systemctl stand-in whose unit states live in plain files."""

    def __init__(self, root: Path):
        self.state_dir = root / "systemd-state"
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.path = root / "fake-systemctl"
        self.path.write_text(FAKE_SYSTEMCTL.format(state_dir=self.state_dir))
        self.path.chmod(0o755)

    def add(self, name: str, state: str = "inactive") -> None:
        (self.state_dir / f"{name}.state").write_text(f"{state}\n")

    def fail(self, name: str, message: str = "Job failed") -> None:
        (self.state_dir / f"{name}.fail").write_text(message)

    def delay(self, name: str, seconds: float) -> None:
        (self.state_dir / f"{name}.delay").write_text(str(seconds))

    def state(self, name: str) -> str:
        return (self.state_dir / f"{name}.state").read_text().strip()

    def calls(self) -> list[str]:
        log = self.state_dir / "calls.log"
        return log.read_text().splitlines() if log.exists() else []
