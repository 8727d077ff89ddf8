#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Manual override from the command line.

Usage:
  python tools/manual_control.py on
  python tools/manual_control.py off
  python tools/manual_control.py status
"""

import os
import sys
import json
import argparse

import requests

GUI_BASE = os.getenv("PULSE_GUI", "http://127.0.0.1:3000")


def main():
    ap = argparse.ArgumentParser(description="Switch the actuator or show bridge status")
    ap.add_argument("action", choices=["on", "off", "status"])
    ap.add_argument("--base", default=GUI_BASE, help="Dashboard base URL (default: %(default)s)")
    ap.add_argument("--timeout", type=float, default=8.0)
    args = ap.parse_args()

    try:
        if args.action == "status":
            resp = requests.get(f"{args.base}/api/status", timeout=args.timeout)
        else:
            resp = requests.post(f"{args.base}/api/manual/{args.action}", timeout=args.timeout)
    except requests.RequestException as e:
        print(f"[manual_control] dashboard unreachable: {e}")
        sys.exit(2)

    try:
        body = resp.json()
    except ValueError:
        body = {"raw": resp.text}
    print(json.dumps(body, indent=2))
    if args.action != "status" and not body.get("ok"):
        sys.exit(1)


if __name__ == "__main__":
    main()
