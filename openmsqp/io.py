import queue

import numpy as np
from termcolor import colored

LINE = "-" * 113

STATUS_COLORS = {
    "CONVERGED": "green",
    "MAX_ITER_REACHED": "yellow",
    "TIMED_OUT": "yellow",
    "DIVERGED": "red",
}


def intro():
    ascii_art = r"""
                  ___                   __  __ ____   ___  ____
                 / _ \ _ __   ___ _ __ |  \/  / ___| / _ \|  _ \
                | | | | '_ \ / _ \ '_ \| |\/| \___ \| | | | |_) |
                | |_| | |_) |  __/ | | | |  | |___) | |_| |  __/
                 \___/| .__/ \___|_| |_|_|  |_|____/ \__\_\_|
                      |_|
-----------------------------------------------------------------------------------------------------------------
                        Direct multiple shooting + sequential quadratic programming
-----------------------------------------------------------------------------------------------------------------
"""
    print(ascii_art)


def print_problem_summary(settings, problem):
    """Print dimensions of the transcribed problem and the main options."""
    n = settings.dis.n
    n_z = (n + 1) * problem.n_x + n * problem.n_u + problem.n_p
    rows = sum(c.size for c in problem.constraints)
    print(f"States: {problem.n_x}    Controls: {problem.n_u}    Parameters: {problem.n_p}")
    print(f"Shooting intervals: {n}    Decision variables: {n_z}    Constraint blocks: "
          f"{len(problem.constraints)} ({rows} rows per node at most)")
    if settings.dis.integrator == "rk":
        integrator = f"embedded RK order {settings.dis.order}"
    else:
        integrator = f"diffrax {settings.dis.solver}"
    print(f"Integrator: {integrator}, rtol={settings.dis.rtol:.0e}, atol={settings.dis.atol:.0e}")
    print(f"Hessian: {settings.sqp.hessian}    QP: {settings.qp.kind}    "
          f"KKT tolerance: {settings.sqp.kkt_tol:.0e}    Mode: {settings.sqp.mode}")
    print(LINE)


def header():
    print("{:^4} | {:^9} | {:^11} | {:^9} | {:^8} | {:^11} | {:^7} | {:^11} | {:^11} | {:^8}".format(
        "Iter", "KKT", "Objective", "Infeas", "Alpha", "Merit", "QP It", "Int (ms)", "QP (ms)", "Status"))
    print(colored(LINE))


def format_row(data: dict) -> str:
    return "{:4d} | {:9.2e} | {:11.4e} | {:9.2e} | {:8.2e} | {:11.4e} | {:7d} | {:11.1f} | {:11.1f} | {}".format(
        data["iter"],
        data["kkt"],
        data["objective"],
        data["infeasibility"],
        data["alpha"],
        data["merit"],
        data["qp_iterations"],
        data["integration_time"],
        data["qp_time"],
        colored(data["status"], STATUS_COLORS.get(data["status"], None)),
    )


def intermediate(print_queue: queue.Queue, settings):
    """Print queued iteration rows until the process exits."""
    while True:
        data = print_queue.get()
        try:
            if data is not None and settings.dev.printing:
                print(format_row(data))
        finally:
            print_queue.task_done()


def footer(status, computation_time):
    print(colored(LINE))
    BOLD = "\033[1m"
    RESET = "\033[0m"
    print("------------------------------------------------------ " + BOLD + "RESULTS" + RESET
          + " ------------------------------------------------------")
    print("Status: ", colored(status, STATUS_COLORS.get(status, None), attrs=["bold"]))
    print("Total Computation Time: ", computation_time)


def print_results_summary(result, timing_post, timing_init, timing_solve):
    """Print the final objective, parameters and timings."""
    print(LINE)
    print(f"Objective: {result['objective']:.6e}    KKT residual: {result['kkt_residual']:.2e}    "
          f"Iterations: {result['iterations']}")
    for name, value in result.parameters.items():
        print(f"Parameter {name}: {np.array2string(np.asarray(value), precision=6)}")
    if timing_init is not None:
        print(f"Initialization time: {timing_init:.3f} s")
    if timing_solve is not None:
        print(f"Solve time: {timing_solve:.3f} s")
    if timing_post is not None:
        print(f"Post-processing time: {timing_post:.3f} s")
    print(LINE)
