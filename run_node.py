import argparse
import uvicorn
from kvt.config import NodeConfig
from kvt.node_api import create_app

def main():
    p = argparse.ArgumentParser()
    p.add_argument("--node-id", required=True)
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, required=True)
    p.add_argument("--peers", default="", help="Comma list of peer base URLs, e.g. http://127.0.0.1:8002,http://127.0.0.1:8003")
    p.add_argument("--sync-interval", type=float, default=5.0, help="Seconds between sync rounds, 0 disables")
    p.add_argument("--purge-interval", type=float, default=60.0, help="Seconds between tombstone purges, 0 disables")
    p.add_argument("--tombstone-ttl", type=float, default=86400.0, help="Seconds a tombstone is kept before purge")
    p.add_argument("--debug", action="store_true")
    args = p.parse_args()

    peers = [x.strip() for x in args.peers.split(",") if x.strip()]
    cfg = NodeConfig(
        node_id=args.node_id,
        base_url=f"http://{args.host}:{args.port}",
        peers=peers,
        debug=args.debug,
        sync_interval_s=args.sync_interval,
        purge_interval_s=args.purge_interval,
        tombstone_ttl_s=args.tombstone_ttl,
    )
    app = create_app(cfg)

    uvicorn.run(app, host=args.host, port=args.port)

if __name__ == "__main__":
    main()
