from openmsqp.nlp.assembler import NLPAssembler
from openmsqp.nlp.evaluation import (
    Evaluation,
    NLPEvaluator,
    NodeGroup,
    element_gradients,
    lagrangian_gradient,
)
from openmsqp.nlp.hessian import (
    BlockBFGSHessian,
    ExactHessian,
    GaussNewtonHessian,
    HessianApproximation,
    clip_eigenvalues,
    get_hessian,
)
from openmsqp.nlp.qp import StructuredQP

__all__ = [
    "BlockBFGSHessian",
    "Evaluation",
    "ExactHessian",
    "GaussNewtonHessian",
    "HessianApproximation",
    "NLPAssembler",
    "NLPEvaluator",
    "NodeGroup",
    "StructuredQP",
    "clip_eigenvalues",
    "element_gradients",
    "get_hessian",
    "lagrangian_gradient",
]
