# src/pipelines/run_multicanonical.py
import yaml
import argparse
from pathlib import Path

from line_profiler import profile

from time import time

import numpy as np
import networkx as nx
from tqdm import tqdm

from blockmodel.io import GraphLoader, MulticanonicalFit, MulticanonicalWriter
from blockmodel.graph_data import GraphData, gd_from_networkx
from blockmodel.block_data import BlockData
from blockmodel.entropy import EntropyArgs
from blockmodel.mcmc import BlockMCMC
from blockmodel.multicanonical import MulticanonicalState, multicanonical_equilibrate
from blockmodel.utils.logger import CSVLogger

from blockmodel.utils.pipeline_utils import (
    clean_filename,
    run_folderpath,
    GraphSpec,
    RunConfig,
)


def load_graph(graph_spec: GraphSpec, seed: int) -> GraphData:
    if "path" in graph_spec:
        return GraphLoader.load(
            Path(graph_spec["path"]),
            directed=graph_spec.get("directed"),
            force_undirected=bool(graph_spec.get("force_undirected", False)),
        )
    sizes = list(graph_spec["sizes"])
    p = [[graph_spec["p_in"] if i == j else graph_spec["p_out"] for j in range(len(sizes))]
         for i in range(len(sizes))]
    G = nx.stochastic_block_model(sizes, p, seed=seed)
    return gd_from_networkx(G)


@profile
def main(config_path: str): # type: ignore

    config: RunConfig = yaml.safe_load(Path(config_path).read_text())

    state_config = config["state"]
    mc_config = config["multicanonical"]
    logging_config = config["logging"]

    seed = config["seed"]
    rng = np.random.default_rng(seed)

    entropy_args = EntropyArgs.from_dict(state_config.get("entropy_args"))

    iterator = tqdm(config["graphs"], desc="Multicanonical runs", total=len(config["graphs"]))
    for graph_spec in iterator:
        g = load_graph(graph_spec, seed)
        B = int(state_config.get("B", 2))
        b = rng.integers(B, size=g.num_nodes)

        state = BlockData(g, b, B=B,
                          deg_corr=bool(state_config.get("deg_corr", False)),
                          use_hash=bool(state_config.get("use_hash", True)))
        mcmc = BlockMCMC(state, entropy_args,
                         c=float(state_config.get("c", 1.0)),
                         allow_vacate=bool(state_config.get("allow_vacate", True)))

        # relax the random initial partition before fixing the entropy range
        tic = time()
        mcmc.sweep(rng, beta=1.0, niter=int(mc_config.get("n_init_sweeps", 10)))
        S = state.entropy(entropy_args)
        width = float(mc_config.get("range_width", 0.1 * abs(S) + 1.0))
        S_min = float(mc_config.get("S_min", S - width))
        S_max = float(mc_config.get("S_max", S + width))
        print(f"{graph_spec['name']}: S = {S:.2f} after {time() - tic:.2f} seconds, "
              f"range [{S_min:.2f}, {S_max:.2f})")

        m_state = MulticanonicalState(S_min, S_max,
                                      nbins=int(mc_config.get("nbins", 100)),
                                      niter=int(mc_config.get("niter", g.num_nodes)))

        log_path = Path(logging_config["logging_folder"]) / f"{clean_filename(graph_spec['name'])}.csv"
        tic = time()
        with CSVLogger(log_path, log_every=logging_config["log_every"]) as logger:
            S, n_sweeps = multicanonical_equilibrate(
                m_state, mcmc, rng,
                f_range=tuple(mc_config.get("f_range", (1.0, 1e-4))),
                r=float(mc_config.get("r", 2.0)),
                flatness=float(mc_config.get("flatness", 0.8)),
                max_sweeps=mc_config.get("max_sweeps"),
                logger=logger,
            )
        toc = time()
        print(f"{graph_spec['name']}: {n_sweeps} sweeps took {toc - tic:.2f} seconds, "
              f"f = {m_state.f:.3g}, flatness = {m_state.get_flatness():.3f}")

        fit = MulticanonicalFit.from_state(m_state, state.b, S,
                                           metadata={"graph": graph_spec["name"], "seed": seed,
                                                     "n_sweeps": n_sweeps})
        out_dir = run_folderpath(Path("results/multicanonical"), state_config, graph_spec)
        print(f'Out directory: {out_dir}')
        MulticanonicalWriter.save(out_dir, fit)


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("--config", type=str, help="Path to the configuration file.")
    args = p.parse_args()

    main(config_path=args.config)
