import io
import base64
from typing import Any, Dict, Optional, Sequence

import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import networkx as nx
import numpy as np

from .graph import ScheduleGraph
from .models import Activity, ScheduleResult

DEFAULT_THEME: Dict[str, Any] = {
    "critical": "#d62728",
    "noncritical": "#1f77b4",
    "node_crit": "#fbd5d5",
    "node_noncrit": "#dbe9f6",
    "edge_fs": "#444444",
    "edge_ss": "#2ca02c",
    "edge_ff": "#9467bd",
    "edge_sf": "#ff7f0e",
}

EDGE_STYLES = {"FS": "solid", "SS": "dashed", "FF": "dotted", "SF": "dashdot"}


def _simple_digraph(graph: ScheduleGraph) -> nx.DiGraph:
    """Collapse parallel edges so each pair carries one combined label."""
    G = nx.DiGraph()
    multi = graph.to_networkx()
    G.add_nodes_from(multi.nodes(data=True))
    for u, v, data in multi.edges(data=True):
        if G.has_edge(u, v):
            G[u][v]["label"] += f"\n{data['label']}"
        else:
            G.add_edge(u, v, label=data["label"], rel_type=data["rel_type"])
    return G


def create_network_diagram(
    graph: ScheduleGraph, result: ScheduleResult, theme: Optional[Dict[str, Any]] = None
) -> plt.Figure:
    """
    Create an activity-on-node network diagram with networkx and Matplotlib.
    Nodes are laid out left to right by early start.
    """
    theme = {**DEFAULT_THEME, **(theme or {})}

    if not len(graph):
        fig, ax = plt.subplots(figsize=(10, 6))
        ax.text(0.5, 0.5, 'No activities to display', ha='center', va='center', fontsize=14)
        ax.axis('off')
        return fig

    G = _simple_digraph(graph)

    num_nodes = len(G.nodes())
    fig, ax = plt.subplots(figsize=(max(14, int(num_nodes * 0.8)), max(10, int(num_nodes * 0.5))))

    # Stack activities sharing an early start
    pos = {}
    rows: Dict[int, int] = {}
    for act_id in G.nodes():
        es = result.activities[act_id].early_start
        pos[act_id] = (es * 3, -rows.get(es, 0))
        rows[es] = rows.get(es, 0) + 1

    for u, v, data in G.edges(data=True):
        rel_type = data.get('rel_type', 'FS')
        nx.draw_networkx_edges(G, pos, edgelist=[(u, v)],
                               edge_color=theme[f"edge_{rel_type.lower()}"],
                               style=EDGE_STYLES.get(rel_type, 'solid'),
                               arrows=True, arrowsize=20,
                               connectionstyle="arc3,rad=0.1",
                               ax=ax, width=2)

    nx.draw_networkx_edge_labels(G, pos, nx.get_edge_attributes(G, 'label'), font_size=8, ax=ax)

    critical_nodes = [n for n in G.nodes() if result.activities[n].is_critical]
    non_critical_nodes = [n for n in G.nodes() if not result.activities[n].is_critical]

    nx.draw_networkx_nodes(G, pos, nodelist=non_critical_nodes,
                           node_color=theme["node_noncrit"], node_size=3000,
                           node_shape='s', ax=ax)
    nx.draw_networkx_nodes(G, pos, nodelist=critical_nodes,
                           node_color=theme["node_crit"], node_size=3000,
                           node_shape='s', ax=ax, edgecolors=theme["critical"], linewidths=3)

    labels = {}
    for node in G.nodes():
        s = result.activities[node]
        labels[node] = f"{node}\nD:{s.duration}\nES:{s.early_start} EF:{s.early_finish}\nLS:{s.late_start} LF:{s.late_finish}\nTF:{s.total_float}"
    nx.draw_networkx_labels(G, pos, labels, font_size=7, ax=ax)

    legend_elements = [
        mpatches.Patch(facecolor=theme["node_crit"], edgecolor=theme["critical"], linewidth=2, label='Critical Activity'),
        mpatches.Patch(facecolor=theme["node_noncrit"], label='Non-Critical Activity'),
        plt.Line2D([0], [0], color=theme["edge_fs"], linewidth=2, linestyle='solid', label='FS (Finish-to-Start)'),
        plt.Line2D([0], [0], color=theme["edge_ss"], linewidth=2, linestyle='dashed', label='SS (Start-to-Start)'),
        plt.Line2D([0], [0], color=theme["edge_ff"], linewidth=2, linestyle='dotted', label='FF (Finish-to-Finish)'),
        plt.Line2D([0], [0], color=theme["edge_sf"], linewidth=2, linestyle='dashdot', label='SF (Start-to-Finish)'),
    ]
    ax.legend(handles=legend_elements, loc='upper left', bbox_to_anchor=(1.02, 1), fontsize=8, facecolor='white', frameon=True)
    ax.set_title('Project Network Diagram (PDM - Activity on Node)', fontsize=14, fontweight='bold')
    ax.axis('off')
    fig.tight_layout()
    return fig


def create_gantt_chart(
    result: ScheduleResult,
    activities: Optional[Sequence[Activity]] = None,
    theme: Optional[Dict[str, Any]] = None,
    scale: str = "Day",
) -> plt.Figure:
    """
    Create a Gantt chart of early dates with total float bars.
    """
    theme = {**DEFAULT_THEME, **(theme or {})}
    names = {act.id: act.name for act in activities or ()}

    if not result.activities:
        fig, ax = plt.subplots(figsize=(12, 6))
        ax.text(0.5, 0.5, 'No activities to display', ha='center', va='center', fontsize=14)
        ax.axis('off')
        return fig

    ordered = sorted(
        result.activities.values(),
        key=lambda s: (s.early_start, str(s.activity_id)),
        reverse=True,
    )

    fig, ax = plt.subplots(figsize=(14, max(6, len(ordered) * 0.5)))

    for i, sched in enumerate(ordered):
        color = theme["critical"] if sched.is_critical else theme["noncritical"]
        ax.barh(i, sched.duration, left=sched.early_start, height=0.6,
                color=color, edgecolor=color, linewidth=2)
        ax.text(sched.early_start + sched.duration / 2, i, f"{sched.activity_id} ({sched.duration}d)",
                ha='center', va='center', color='white', fontweight='bold', fontsize=9)

        if sched.total_float > 0:
            ax.barh(i, sched.total_float, left=sched.early_finish, height=0.3,
                    color='lightgray', edgecolor='gray', linewidth=1, alpha=0.7)
            ax.text(sched.early_finish + sched.total_float / 2, i, f'TF:{sched.total_float}',
                    ha='center', va='center', fontsize=7, color='gray')

    labels = []
    for sched in ordered:
        name = names.get(sched.activity_id, "")
        if len(name) > 20:
            name = name[:20] + "..."
        labels.append(f"{sched.activity_id}: {name}" if name else str(sched.activity_id))
    ax.set_yticks(range(len(ordered)))
    ax.set_yticklabels(labels)

    ax.set_xlabel(f'Time ({scale}s)', fontsize=12)
    ax.set_ylabel('Activities', fontsize=12)
    ax.set_title('Project Gantt Chart', fontsize=14, fontweight='bold')

    start = result.project_start
    max_days = result.project_end + 1

    if scale == "Week":
        major_ticks = np.arange(start, max_days + 1, 7)
        ax.set_xticks(major_ticks)
        ax.set_xticklabels([f"W{int((t - start) / 7)}" for t in major_ticks])
    elif scale == "Month":
        major_ticks = np.arange(start, max_days + 1, 30)
        ax.set_xticks(major_ticks)
        ax.set_xticklabels([f"M{int((t - start) / 30)}" for t in major_ticks])
    else:
        ax.set_xticks(np.arange(start, max_days + 1, max(1, int((max_days - start) / 20))))

    ax.set_xlim(start - 0.5, max_days)
    ax.grid(axis='x', linestyle='--', alpha=0.7)
    ax.set_axisbelow(True)

    legend_elements = [
        mpatches.Patch(color=theme["critical"], label='Critical Activity'),
        mpatches.Patch(color=theme["noncritical"], label='Non-Critical Activity'),
        mpatches.Patch(color='lightgray', label='Total Float'),
    ]
    ax.legend(handles=legend_elements, loc='upper right')

    ax.axvline(x=result.project_end, color=theme["critical"], linestyle='--', linewidth=2)
    ax.text(result.project_end, -0.5, f'Day {result.project_end}',
            ha='center', va='top', color=theme["critical"], fontweight='bold')

    fig.tight_layout()
    return fig


def fig_to_base64(fig: plt.Figure) -> str:
    buffer = io.BytesIO()
    fig.savefig(buffer, format="png", dpi=180, bbox_inches="tight")
    buffer.seek(0)
    encoded = base64.b64encode(buffer.read()).decode("utf-8")
    buffer.close()
    return encoded
