"""Command line front end: ``python -m smartirrigation <command>``."""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys

from . import IrrigationContext, async_setup, async_unload
from .config import ClientSettings
from .coordinator import filter_logs
from .irrigation_api import IrrigationApiError


def _print_status(ctx: IrrigationContext) -> None:
    status = ctx.scheduler.status
    if status is None:
        print("No status yet")
        return
    print(f"Device {status.device_id} ({ctx.scheduler.data_age})")
    print(f"  temperature  {status.temperature_c:.1f} °C")
    print(f"  humidity     {status.humidity_pct:.1f} %")
    print(f"  soil         {status.soil_status} (raw {status.soil_raw})")
    print(f"  rain         {status.rain_status}")
    print(f"  pump/shade   {status.pump_state} / {status.shade_state}")
    plan = status.today_plan
    print(f"  today        {plan.executed_volume_l:.1f} of {plan.planned_volume_l:.1f} L")
    if ctx.scheduler.history:
        last = ctx.scheduler.history[-1]
        print(f"  history      {len(ctx.scheduler.history)} points, last at {last.time}")


def _print_logs(ctx: IrrigationContext, search: str = "") -> None:
    page = ctx.scheduler.logs
    pages = max(ctx.scheduler.total_log_pages, 1)
    print(f"Logs page {ctx.scheduler.log_page}/{pages} ({page.total} total)")
    for entry in filter_logs(page.data, search):
        print(f"  {entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.level:<5} {entry.message}")


async def _cmd_login(ctx: IrrigationContext, args) -> int:
    username = args.username or input("Username: ")
    password = getpass.getpass("Password: ")
    session = await ctx.login(username, password, admin=args.admin)
    print(f"Logged in as {session.user.username} ({session.user.role})")
    if session.device_id:
        print(f"Bound to device {session.device_id}")
    return 0


async def _cmd_logout(ctx: IrrigationContext, args) -> int:
    await ctx.logout()
    print("Logged out")
    return 0


async def _cmd_whoami(ctx: IrrigationContext, args) -> int:
    session = ctx.sessions.session
    if not session.is_authenticated:
        print("Not logged in")
        return 1
    print(f"{session.user.username} ({session.user.role}), device {ctx.client.device_id}")
    return 0


async def _cmd_status(ctx: IrrigationContext, args) -> int:
    await ctx.scheduler.async_refresh_status()
    _print_status(ctx)
    return 0


async def _cmd_logs(ctx: IrrigationContext, args) -> int:
    ctx.scheduler.set_log_page(args.page)
    await ctx.scheduler.async_refresh_logs()
    _print_logs(ctx, args.search)
    return 0


async def _cmd_forecast(ctx: IrrigationContext, args) -> int:
    for day in await ctx.forecasts.refresh():
        print(f"{day.date:%a %m-%d}  {day.temp_min:.0f}-{day.temp_max:.0f} °C  {day.precip_mm:.1f} mm  {day.condition}")
    return 0


async def _cmd_location(ctx: IrrigationContext, args) -> int:
    if args.set:
        config = await ctx.save_location(*args.set)
    else:
        await ctx.locations.get()
        config = ctx.locations.config
    suffix = "" if config.has_real_location else " (default, not saved yet)"
    print(f"{config.latitude:.4f}, {config.longitude:.4f}{suffix}")
    return 0


async def _cmd_irrigate(ctx: IrrigationContext, args) -> int:
    command_id = await ctx.trigger_irrigation(args.volume)
    print(f"Irrigation queued (command {command_id})")
    return 0


async def _cmd_recompute(ctx: IrrigationContext, args) -> int:
    for day in await ctx.recompute_plan():
        print(f"{day.date}  {day.planned_volume_l:.2f} L")
    return 0


async def _cmd_passwd(ctx: IrrigationContext, args) -> int:
    old = getpass.getpass("Current password: ")
    new = getpass.getpass("New password: ")
    print(await ctx.change_password(old, new))
    return 0


async def _cmd_users(ctx: IrrigationContext, args) -> int:
    client = ctx.client
    if args.action == "list":
        for user in await client.list_users():
            print(f"{user.id:>4}  {user.username:<20} {user.role:<6} {user.device_id or ''}")
    elif args.action == "add":
        password = getpass.getpass(f"Password for {args.username}: ")
        await client.create_user(args.username, password, args.device_id, args.device_name)
        print(f"User {args.username} created")
    else:
        await client.delete_user(args.user_id)
        print(f"User {args.user_id} deleted")
    return 0


async def _cmd_watch(ctx: IrrigationContext, args) -> int:
    remove = ctx.scheduler.add_listener(lambda: _print_status(ctx))
    ctx.mount()
    try:
        if args.duration:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    finally:
        remove()
        ctx.unmount()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smartirrigation", description="Smart irrigation client")
    parser.add_argument("--origin", help="origin the client is served from (default: localhost)")
    parser.add_argument("--state-file", help="where the session is kept between runs")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="log in and remember the session")
    p.add_argument("username", nargs="?")
    p.add_argument("--admin", action="store_true", help="use the administrator login")
    p.set_defaults(func=_cmd_login)

    sub.add_parser("logout", help="forget the session").set_defaults(func=_cmd_logout)
    sub.add_parser("whoami", help="show the current session").set_defaults(func=_cmd_whoami)
    sub.add_parser("status", help="show device status").set_defaults(func=_cmd_status)

    p = sub.add_parser("logs", help="show a page of device logs")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--search", default="", help="only entries whose message or device id contains this")
    p.set_defaults(func=_cmd_logs)

    sub.add_parser("forecast", help="refresh and show the 5-day forecast").set_defaults(func=_cmd_forecast)

    p = sub.add_parser("location", help="show or save the device location")
    p.add_argument("--set", nargs=2, metavar=("LAT", "LON"))
    p.set_defaults(func=_cmd_location)

    p = sub.add_parser("irrigate", help="water now")
    p.add_argument("volume", type=float, help="litres")
    p.set_defaults(func=_cmd_irrigate)

    sub.add_parser("recompute", help="recompute the irrigation plan").set_defaults(func=_cmd_recompute)
    sub.add_parser("passwd", help="change your password").set_defaults(func=_cmd_passwd)

    p = sub.add_parser("users", help="manage users (admin)")
    users = p.add_subparsers(dest="action", required=True)
    users.add_parser("list")
    add = users.add_parser("add")
    add.add_argument("username")
    add.add_argument("device_id")
    add.add_argument("--device-name", default="")
    delete = users.add_parser("delete")
    delete.add_argument("user_id", type=int)
    p.set_defaults(func=_cmd_users)

    p = sub.add_parser("watch", help="poll the device until interrupted")
    p.add_argument("--duration", type=float, help="seconds to watch")
    p.set_defaults(func=_cmd_watch)
    return parser


async def _run(args) -> int:
    overrides = {}
    if args.origin:
        overrides["origin"] = args.origin
    if args.state_file:
        overrides["state_file"] = args.state_file
    settings = ClientSettings(**overrides)

    ctx = await async_setup(settings)
    try:
        return await args.func(ctx, args)
    except IrrigationApiError as err:
        print(f"Error: {err.message}", file=sys.stderr)
        return 1
    finally:
        await async_unload(ctx)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    level = "DEBUG" if args.verbose else ClientSettings().log_level
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
