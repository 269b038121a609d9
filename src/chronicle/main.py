"""Chronicle CLI 入口：连载小说的有界上下文组装。"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from chronicle.config.settings import ContextConfig, load_config
from chronicle.engine.assembler import ContextAssembler, finalize_unit
from chronicle.errors import ChronicleError, ContextOverflowError
from chronicle.memory.writing_memory import memory_stats
from chronicle.models.budget import SECTION_NAMES
from chronicle.models.episode import Direction, EpisodeLog, Feedback, UnitText
from chronicle.models.world import WorldState
from chronicle.output.store import ProjectStore
from chronicle.state.breadcrumb_tracker import breadcrumb_dashboard

console = Console()
logger = logging.getLogger("chronicle")


def _load_yaml(path: str | Path) -> dict:
    """读取 YAML 文件为字典。"""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"文件不存在: {p}")
    with open(p, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _read_text(path: str | Path) -> str:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"文件不存在: {p}")
    return p.read_text(encoding="utf-8")


def _config(args: argparse.Namespace) -> ContextConfig:
    return load_config(args.config or os.environ.get("CHRONICLE_CONFIG", ""))


# ──────────────────────────────────────────
# 子命令
# ──────────────────────────────────────────


def cmd_init(args: argparse.Namespace) -> None:
    store = ProjectStore(args.root)
    state = store.init(args.project, args.title)
    if args.world:
        state.world = WorldState.model_validate(_load_yaml(args.world))
        state = store.save(args.project, state)
    console.print(f"[bold green]项目已创建: {store.project_dir(args.project)}[/bold green]")
    console.print(
        f"  角色 {len(state.world.roster_names())} 人，伏笔 {len(state.world.breadcrumbs)} 条"
    )


def cmd_assemble(args: argparse.Namespace) -> None:
    store = ProjectStore(args.root)
    state = store.load(args.project)
    unit = args.unit or state.last_unit + 1
    direction = Direction.model_validate(_load_yaml(args.direction)) if args.direction else None
    system = _read_text(args.system) if args.system else ""

    assembler = ContextAssembler(_config(args))
    try:
        result = assembler.assemble_with_budget(
            state.world,
            state.logs,
            state.units,
            state.feedback,
            unit,
            direction=direction,
            memory=state.memory,
            system=system,
        )
    except ContextOverflowError as e:
        console.print(Panel(str(e), title="[red]上下文超限[/red]", border_style="red"))
        sys.exit(1)

    path = store.save_prompt(args.project, unit, result.text)

    table = Table(title=f"第 {unit} 单元 token 用量（{result.level.value} 档）", show_lines=False)
    table.add_column("分段", style="cyan")
    table.add_column("用量", style="yellow", justify="right")
    table.add_column("上限", style="white", justify="right")
    budget = assembler.ledger.budget(result.level)
    for name in SECTION_NAMES:
        table.add_row(name, str(result.usage.section(name)), str(getattr(budget, name)))
    table.add_row("total", str(result.usage.total), str(budget.total), style="bold")
    console.print(table)
    console.print(
        f"详细层: {', '.join(result.selection.detailed) or '（无）'}"
        f"  摘要层: {len(result.selection.summary)} 人"
    )
    console.print(f"[cyan]提示词已保存: {path}[/cyan]")


def cmd_feedback(args: argparse.Namespace) -> None:
    store = ProjectStore(args.root)
    state = store.load(args.project)
    state.feedback.append(
        Feedback(unit=args.unit, type=args.type, content=args.text, is_recurring=args.recurring)
    )
    store.save(args.project, state)
    label = "持续生效" if args.recurring else "单次"
    console.print(f"[green]已记录第 {args.unit} 单元反馈（{label}）[/green]")


def cmd_finalize(args: argparse.Namespace) -> None:
    store = ProjectStore(args.root)
    state = store.load(args.project)
    log = EpisodeLog.model_validate(_load_yaml(args.log))
    unit_text = UnitText(
        unit=log.unit,
        content=_read_text(args.text),
        edited_content=_read_text(args.edited) if args.edited else None,
    )
    # 持续生效的反馈同样要进入写作记忆；已吸收过的不再重复
    pending = [f for f in state.feedback if f.unit == log.unit and not f.ingested]

    updated = finalize_unit(state, log, unit_text, pending, _config(args))
    saved = store.save(args.project, updated)

    stats = memory_stats(saved.memory)
    console.print(f"[bold green]第 {log.unit} 单元已写回（revision={saved.revision}）[/bold green]")
    console.print(
        f"  风格规则 {stats['total_rules']} 条，常见错误 {stats['total_mistakes']} 条，"
        f"直接采用率 {stats['direct_adoption_rate']}%"
    )


def cmd_status(args: argparse.Namespace) -> None:
    store = ProjectStore(args.root)
    state = store.load(args.project)
    config = _config(args)
    current = args.unit or state.last_unit + 1

    table = Table(title=f"《{state.title}》伏笔（第 {current} 单元视角）", show_lines=True)
    table.add_column("伏笔", style="cyan")
    table.add_column("状态", style="yellow")
    table.add_column("最近提及", justify="right")
    table.add_column("计划揭晓", justify="right")
    table.add_column("警告", style="red")
    for row in breadcrumb_dashboard(state.world.breadcrumbs, current, config.staleness):
        table.add_row(
            row["name"],
            row["status"],
            str(row["last_mentioned"]),
            str(row["planned_reveal"] or "-"),
            row["warning_type"] or "",
        )
    console.print(table)

    stats = memory_stats(state.memory)
    mem_table = Table(title="写作记忆", show_lines=False)
    mem_table.add_column("项目", style="cyan")
    mem_table.add_column("数值", style="white", justify="right")
    for key, value in stats.items():
        mem_table.add_row(key, str(value))
    console.print(mem_table)


# ──────────────────────────────────────────
# 入口
# ──────────────────────────────────────────


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="chronicle",
        description="Chronicle - 连载小说的有界上下文组装器",
    )
    parser.add_argument(
        "--root", default="projects", help="项目根目录（默认: projects）"
    )
    parser.add_argument(
        "--config", "-c", default="", help="配置 YAML（默认读取 CHRONICLE_CONFIG）"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="详细日志输出"
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    init_parser = subparsers.add_parser("init", help="新建项目")
    init_parser.add_argument("project", help="项目名")
    init_parser.add_argument("--title", default=None, help="作品标题")
    init_parser.add_argument("--world", default="", help="初始世界状态 YAML")

    assemble_parser = subparsers.add_parser("assemble", help="组装下一单元的提示词")
    assemble_parser.add_argument("project", help="项目名")
    assemble_parser.add_argument("--unit", type=int, default=0, help="单元序号（默认: 最新单元 + 1）")
    assemble_parser.add_argument("--direction", default="", help="导演指令 YAML")
    assemble_parser.add_argument("--system", default="", help="系统提示文本文件")

    feedback_parser = subparsers.add_parser("feedback", help="记录操作者反馈")
    feedback_parser.add_argument("project", help="项目名")
    feedback_parser.add_argument("text", help="反馈内容")
    feedback_parser.add_argument("--unit", type=int, required=True, help="反馈针对的单元")
    feedback_parser.add_argument("--type", default="general", help="反馈类型")
    feedback_parser.add_argument(
        "--recurring", action="store_true", help="对后续所有单元持续生效"
    )

    finalize_parser = subparsers.add_parser("finalize", help="单元完成后写回状态")
    finalize_parser.add_argument("project", help="项目名")
    finalize_parser.add_argument("--log", required=True, help="单元日志 YAML")
    finalize_parser.add_argument("--text", required=True, help="生成的原始正文")
    finalize_parser.add_argument("--edited", default="", help="操作者改稿后的正文")

    status_parser = subparsers.add_parser("status", help="查看伏笔与写作记忆")
    status_parser.add_argument("project", help="项目名")
    status_parser.add_argument("--unit", type=int, default=0, help="以哪个单元为视角")

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    commands = {
        "init": cmd_init,
        "assemble": cmd_assemble,
        "feedback": cmd_feedback,
        "finalize": cmd_finalize,
        "status": cmd_status,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return

    try:
        handler(args)
    except (ChronicleError, FileNotFoundError, FileExistsError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
