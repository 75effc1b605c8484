from typing import Dict, List, Optional, TypedDict
from pathlib import Path

class GraphSpec(TypedDict, total=False):
    name: str
    path: str                 # graph file; omitted for planted graphs
    directed: bool            # overrides the detected direction
    force_undirected: bool
    # planted partition (networkx stochastic_block_model)
    sizes: List[int]
    p_in: float
    p_out: float

class StateConfig(TypedDict, total=False):
    deg_corr: bool
    B: int
    use_hash: bool
    c: float
    allow_vacate: bool
    entropy_args: Dict[str, object]

class MulticanonicalConfig(TypedDict, total=False):
    S_min: float
    S_max: float
    nbins: int
    niter: int
    f_range: List[float]
    r: float
    flatness: float
    max_sweeps: Optional[int]
    n_init_sweeps: int     # plain Metropolis sweeps before the range is fixed
    range_width: float     # used when S_min / S_max are not given

class LoggingConfig(TypedDict):
    logging_folder: str
    log_every: int

class RunConfig(TypedDict):
    seed: int
    state: StateConfig
    multicanonical: MulticanonicalConfig
    logging: LoggingConfig
    graphs: List[GraphSpec]

def clean_filename(name: str) -> str:
    """
    Clean the name of all special characters and spaces, replacing them with underscores.
    """

    name = name.replace(":", "_")
    name = name.replace(".", "_")
    name = name.replace(",", "_")
    name = name.replace(" ", "_")

    return name

def run_folderpath(
    base_dir: Path,
    state_config: StateConfig,
    graph_spec: GraphSpec,
) -> Path:
    """
    Folder for storing a multicanonical run, named after the graph and the
    scalar entries of the state configuration.
    """
    folder_name = graph_spec["name"] + "_" + "_".join(
        f"{k}_{v}" for k, v in sorted(state_config.items()) if not isinstance(v, dict)
    )
    folder_name = clean_filename(folder_name)
    return base_dir / f"multicanonical_{folder_name}"
