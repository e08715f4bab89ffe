import numpy as np
import warnings
from typing import List, Dict, Tuple, Optional, Sequence, Mapping
import functools
from types import MappingProxyType
from dataclasses import dataclass

import traceback

# --- Constants ---
_ARROW = "->"
_STRATEGIES = ("pairwise", "naive")
_NAIVE_WARN_ELEMENTS = 1 << 26  # Full-product size above which the naive strategy warns

# --- Custom Error ---
class EinsumError(ValueError):
    """Custom error type for contraction-related issues."""
    pass

# --- Utility Functions ---
def _check_label(label: str) -> Tuple[bool, str]:
    """
    Validates if a character is a usable axis label for einsum subscripts.

    Any single alphabetic character is accepted, so the label table is not
    limited to 26 symbols. Digits, punctuation and '.' are rejected.

    Args:
        label: The potential label character.

    Returns:
        A tuple (is_valid, reason_string). `reason_string` is empty if valid.
    """
    if not isinstance(label, str) or len(label) != 1:
        return False, "Label must be a single character"
    if label.isalpha():
        return True, ""
    if label.isdigit():
        return False, "Numerical labels are not allowed"
    if label == ".":
        return False, "Ellipsis (...) is not supported in subscripts"
    return False, f"'{label}' is not a letter"


def _check_operands(operands: Sequence[np.ndarray], what: str) -> None:
    """Rejects non-ndarray inputs and warns when element types differ."""
    for index, operand in enumerate(operands):
        if not isinstance(operand, np.ndarray):
            raise EinsumError(f"{what} {index} must be a NumPy array, got {type(operand).__name__}.")
    dtypes = {operand.dtype for operand in operands}
    if len(dtypes) > 1:
        promoted = np.result_type(*operands)
        warnings.warn(f"Operands have differing dtypes {sorted(str(d) for d in dtypes)}; "
                      f"result uses promoted dtype {promoted}.", RuntimeWarning)


def _normalize_axes(axes: Sequence[int], ndim: int, what: str) -> List[int]:
    """
    Wraps negative axis indices and rejects out-of-range or repeated ones.

    The input order is preserved, since callers pair axes up by position.
    """
    normalized: List[int] = []
    for axis in axes:
        if isinstance(axis, bool) or not isinstance(axis, (int, np.integer)):
            raise EinsumError(f"{what} must contain integers, got {axis!r}")
        axis = int(axis)
        if not -ndim <= axis < ndim:
            raise EinsumError(f"Axis {axis} in {what} is out of range for {ndim} dimensions")
        axis %= ndim
        if axis in normalized:
            raise EinsumError(f"Axis {axis} appears more than once in {what}")
        normalized.append(axis)
    return normalized


def _prod(sizes: Sequence[int]) -> int:
    return int(np.prod(sizes, dtype=np.int64))


def _drop_axes(array: np.ndarray, axes: Sequence[int]) -> np.ndarray:
    """Removes size-1 `axes` from `array`, highest index first."""
    sizes = list(array.shape)
    for axis in sorted(axes, reverse=True):
        del sizes[axis]
    return array.reshape(sizes)


def _slice_along(axis: int, index: int) -> Tuple[slice, ...]:
    """Index tuple selecting the size-1 slab at `index` along `axis`."""
    return (slice(None),) * axis + (slice(index, index + 1),)


# --- Pairwise Axis Contraction ---
def sumproduct_pair(left: np.ndarray, right: np.ndarray, sum_axes: Sequence[int],
                    keepdims: bool = False) -> np.ndarray:
    """
    Computes `(left * right).sum(sum_axes)` through a single batched matmul.

    Both operands must already be aligned: same rank, and on every axis the
    extents either match or one of them is 1 (broadcast). The axes are split
    into shared batch axes, left-only and right-only output axes, and the
    fused contraction axis; operands are permuted and flattened to 3-D,
    multiplied with `np.matmul`, and the result is reshaped and permuted back
    to the original axis order.

    An eliminated axis that is nontrivial on only one side is summed on that
    side up front, since the other operand is constant along it.

    Args:
        left: First aligned operand.
        right: Second aligned operand, same rank as `left`.
        sum_axes: Axis indices to eliminate (negative indices allowed).
        keepdims: Keep eliminated axes as size 1 instead of dropping them.

    Returns:
        The contracted array.

    Raises:
        EinsumError: On rank mismatch or mismatched nontrivial extents.
    """
    if left.ndim != right.ndim:
        raise EinsumError(f"Number of dimensions must match for pairwise contraction, "
                          f"got {left.ndim} and {right.ndim}")
    ndim = left.ndim
    sum_axes = sorted(_normalize_axes(sum_axes, ndim, "sum_axes"))
    if not sum_axes:
        return np.asarray(np.multiply(left, right))

    sum_set = set(sum_axes)
    batch_axes: List[int] = []  # nontrivial on both sides, kept
    left_axes: List[int] = []   # kept, owned by left
    right_axes: List[int] = []  # kept, owned by right (or trivial on both)
    batch_size = left_size = right_size = sum_size = 1

    for axis, (left_extent, right_extent) in enumerate(zip(left.shape, right.shape)):
        if left_extent != 1 and right_extent != 1 and left_extent != right_extent:
            raise EinsumError(f"Non-broadcast dimensions must match: axis {axis} has size "
                              f"{left_extent} on the left and {right_extent} on the right")

    for axis in range(ndim):
        left_nontrivial = left.shape[axis] != 1
        right_nontrivial = right.shape[axis] != 1
        if axis in sum_set:
            if left_nontrivial and right_nontrivial:
                sum_size *= left.shape[axis]
            elif left_nontrivial:
                left = left.sum(axis=axis, keepdims=True)
            elif right_nontrivial:
                right = right.sum(axis=axis, keepdims=True)
        elif left_nontrivial and right_nontrivial:
            batch_axes.append(axis)
            batch_size *= left.shape[axis]
        elif left_nontrivial:
            left_axes.append(axis)
            left_size *= left.shape[axis]
        else:
            right_axes.append(axis)
            right_size *= right.shape[axis]

    # Pipeline: permute -> flatten to 3-D -> matmul -> unflatten -> permute back.
    # Output layout before the final permute is [batch, left, summed(1 each), right].
    out_shape = ([left.shape[a] for a in batch_axes] + [left.shape[a] for a in left_axes]
                 + [1] * len(sum_axes) + [right.shape[a] for a in right_axes])
    left_perm = batch_axes + left_axes + sum_axes + right_axes
    right_perm = batch_axes + sum_axes + right_axes + left_axes
    out_perm = [0] * ndim
    for position, axis in enumerate(left_perm):
        out_perm[axis] = position

    left = left.transpose(left_perm).reshape(batch_size, left_size, sum_size)
    right = right.transpose(right_perm).reshape(batch_size, sum_size, right_size)
    result = np.matmul(left, right).reshape(out_shape).transpose(out_perm)

    if not keepdims:
        result = _drop_axes(result, sum_axes)
    return result


# --- Subscript Parsing ---
class ParsedSubscripts:
    """
    Parses an einsum subscript string (e.g., "ij,jk->ik").

    Attributes:
        subscripts: The original subscript string.
        input_groups: One list of labels per operand, spaces removed.
        output_group: Explicit output labels, or None when no '->' was given.
    """
    def __init__(self, subscripts: str):
        """
        Args:
            subscripts: Comma-separated label groups, optionally followed by
                '->' and the output label group.

        Raises:
            EinsumError: For invalid characters or a repeated '->'.
        """
        if not isinstance(subscripts, str):
            raise EinsumError("Subscripts must be a string.")
        self.subscripts: str = subscripts
        self.output_group: Optional[List[str]] = None

        if subscripts.count(_ARROW) > 1:
            raise EinsumError(f"Subscripts may contain at most one '{_ARROW}' separator")
        left, arrow, right = subscripts.partition(_ARROW)

        self.input_groups: List[List[str]] = [self._parse_group(group) for group in left.split(",")]
        if arrow:
            self.output_group = self._parse_group(right)

    def _parse_group(self, group: str) -> List[str]:
        labels = []
        for char in group:
            if char.isspace():
                continue
            is_valid, reason = _check_label(char)
            if not is_valid:
                raise EinsumError(f"Invalid subscript '{char}' in '{self.subscripts}': {reason}")
            labels.append(char)
        return labels


# --- Contraction Plan ---
@dataclass(frozen=True)
class ContractionPlan:
    """
    Immutable plan for one einsum call, derived from subscripts and shapes.

    Every label gets one slot in a global axis frame laid out as
    [output labels, contraction labels]. Each operand is aligned into that
    frame before evaluation. Mapping fields are read-only views, since plans
    are shared through the cache.

    Attributes:
        input_labels: Label sequence of each operand, e.g. (('i', 'j'), ('j', 'k')).
        output_labels: Output labels in result order, e.g. ('i', 'k').
        label_order: All labels in slot order, e.g. ('i', 'k', 'j').
        label_to_slot: Maps label to its slot index. {'i': 0, 'k': 1, 'j': 2}
        label_counts: Occurrences of each label across all input groups.
        label_last_operand: Index of the last operand where the label has an
            extent other than 1, or -1 if it is size 1 everywhere.
        label_sizes: Broadcast extent of each label.
    """
    input_labels: Tuple[Tuple[str, ...], ...]
    output_labels: Tuple[str, ...]
    label_order: Tuple[str, ...]
    label_to_slot: Mapping[str, int]
    label_counts: Mapping[str, int]
    label_last_operand: Mapping[str, int]
    label_sizes: Mapping[str, int]

    @property
    def num_output(self) -> int:
        return len(self.output_labels)

    @property
    def contraction_labels(self) -> Tuple[str, ...]:
        return self.label_order[self.num_output:]

    def describe(self) -> str:
        inputs = ",".join("".join(labels) for labels in self.input_labels)
        output = ", ".join(f"{l}={self.label_sizes[l]}" for l in self.output_labels) or "scalar"
        contracted = ", ".join(f"{l}={self.label_sizes[l]} (x{self.label_counts[l]})"
                               for l in self.contraction_labels) or "none"
        return f"{inputs}->{''.join(self.output_labels)} | output: {output} | contracted: {contracted}"


@functools.lru_cache(maxsize=1024)
def _prepare_contraction_plan(subscripts: str, shapes: Tuple[Tuple[int, ...], ...]) -> ContractionPlan:
    """
    Parses subscripts and validates them against operand shapes.

    All shape checks happen here, before any array data is touched. Results
    are cached on the subscripts and the exact operand shapes.

    Args:
        subscripts: The einsum subscript string.
        shapes: Shape of every operand, in call order.

    Returns:
        A ContractionPlan.

    Raises:
        EinsumError: For parse errors, operand count or rank mismatches,
            repeated-label size mismatches, incompatible extents across
            operands, and duplicate or unknown output labels.
    """
    parsed = ParsedSubscripts(subscripts)

    if len(parsed.input_groups) != len(shapes):
        raise EinsumError(f"The number of operands specified in the subscripts ({len(parsed.input_groups)}) "
                          f"does not match the number of operands provided ({len(shapes)})")

    label_counts: Dict[str, int] = {}
    label_last_operand: Dict[str, int] = {}
    label_sizes: Dict[str, int] = {}
    first_seen: List[str] = []

    for index, (labels, shape) in enumerate(zip(parsed.input_groups, shapes)):
        if len(labels) != len(shape):
            raise EinsumError(f"The number of subscripts for operand {index} ({len(labels)}) "
                              f"does not match the number of dimensions ({len(shape)})")
        label_axis: Dict[str, int] = {}
        for axis, (label, size) in enumerate(zip(labels, shape)):
            if label in label_axis:
                first_size = shape[label_axis[label]]
                if size != first_size:
                    raise EinsumError(f"Subscript '{label}' is repeated for operand {index} "
                                      f"but the sizes don't match, {size} != {first_size}")
            else:
                label_axis[label] = axis

            if label not in label_counts:
                first_seen.append(label)
                label_counts[label] = 0
                label_last_operand[label] = -1
                label_sizes[label] = 1
            label_counts[label] += 1

            if size != 1:
                if label_sizes[label] != 1 and label_sizes[label] != size:
                    raise EinsumError(f"Size of label '{label}' for operand {index} ({size}) does not match "
                                      f"previous size ({label_sizes[label]}) and is not broadcastable")
                label_sizes[label] = size
                label_last_operand[label] = index

    output_labels: List[str] = []
    if parsed.output_group is None:
        # Implicit output: labels seen exactly once, in sorted order
        output_labels = sorted(label for label, count in label_counts.items() if count == 1)
    else:
        for label in parsed.output_group:
            if label in output_labels:
                raise EinsumError(f"Output subscript '{label}' appears more than once in the output")
            if label not in label_counts:
                raise EinsumError(f"Output subscript '{label}' does not appear in the subscripts "
                                  f"for any input operand")
            output_labels.append(label)

    output_set = set(output_labels)
    label_order = tuple(output_labels) + tuple(l for l in first_seen if l not in output_set)

    return ContractionPlan(
        input_labels=tuple(tuple(labels) for labels in parsed.input_groups),
        output_labels=tuple(output_labels),
        label_order=label_order,
        label_to_slot=MappingProxyType({label: slot for slot, label in enumerate(label_order)}),
        label_counts=MappingProxyType(label_counts),
        label_last_operand=MappingProxyType(label_last_operand),
        label_sizes=MappingProxyType(label_sizes),
    )


# --- Einsum Executor ---
def _align_operand(operand: np.ndarray, labels: Tuple[str, ...], plan: ContractionPlan) -> np.ndarray:
    """
    Moves an operand into the plan's global axis frame.

    Repeated labels collapse to their diagonal, placed at the first
    occurrence. Labels the operand lacks become size-1 axes.
    """
    label_axis: Dict[str, int] = {}
    permutation = [-1] * len(plan.label_order)
    axis = 0
    for label in labels:
        if label in label_axis:
            first = label_axis[label]
            # np.diagonal appends the diagonal last; move it back to `first`
            operand = np.moveaxis(np.diagonal(operand, axis1=first, axis2=axis), -1, first)
        else:
            label_axis[label] = axis
            permutation[plan.label_to_slot[label]] = axis
            axis += 1

    for slot, source in enumerate(permutation):
        if source == -1:
            operand = np.expand_dims(operand, axis=-1)
            permutation[slot] = axis
            axis += 1
    if permutation != list(range(len(permutation))):
        operand = operand.transpose(permutation)
    return operand


def _evaluate_pairwise(aligned: List[np.ndarray], plan: ContractionPlan) -> np.ndarray:
    """
    Folds the aligned operands left to right with `sumproduct_pair`.

    A contraction slot is eliminated at the step where its label's last
    nontrivial operand has been multiplied in. Intermediate steps keep
    eliminated axes as size 1 so every partial result stays aligned.
    """
    total = len(plan.label_order)
    result = aligned[0]
    if len(aligned) == 1:
        if total > plan.num_output:
            return result.sum(axis=tuple(range(plan.num_output, total)))
        return result.copy()

    last_step = len(aligned) - 1
    for step in range(1, len(aligned)):
        sum_axes = [slot for slot in range(plan.num_output, total)
                    if plan.label_last_operand[plan.label_order[slot]] <= step]
        result = sumproduct_pair(result, aligned[step], sum_axes, keepdims=step < last_step)
    return result


def _evaluate_naive(aligned: List[np.ndarray], plan: ContractionPlan) -> np.ndarray:
    """Multiplies every aligned operand together, then reduces once."""
    total = len(plan.label_order)
    if len(aligned) > 2:
        full_size = _prod([plan.label_sizes[label] for label in plan.label_order])
        if full_size > _NAIVE_WARN_ELEMENTS:
            warnings.warn(f"Naive einsum materializes an intermediate of {full_size} elements "
                          f"for {plan.describe()}; consider strategy='pairwise'.", RuntimeWarning)
    result = aligned[0].copy()
    for operand in aligned[1:]:
        result = np.multiply(result, operand)
    if total > plan.num_output:
        result = np.sum(result, axis=tuple(range(plan.num_output, total)))
    return result


def einsum(subscripts: str, *operands: np.ndarray, strategy: str = "pairwise") -> np.ndarray:
    """
    Evaluates an Einstein-summation expression over NumPy arrays.

    Each operand gets a comma-separated group of single-letter labels. Labels
    shared between operands are multiplied elementwise; labels absent from
    the output are summed out. Without '->', the output holds every label
    that occurs exactly once, in sorted order.

    Examples:
        `einsum('ij,jk->ik', a, b)` # Matrix multiply
        `einsum('ij,jk', a, b)`     # Same, implicit output 'ik'
        `einsum('ii->i', a)`        # Diagonal
        `einsum('ii', a)`           # Trace
        `einsum('bij,bjk->bik', [a, b])` # Batched matmul, operands as a list

    Args:
        subscripts: Subscript string (e.g., 'ij,jk->ik'). Spaces are ignored.
        *operands: Input NumPy arrays, or a single list/tuple of them.
        strategy: 'pairwise' (default) contracts operands one at a time and
            drops each summed axis as soon as no later operand needs it;
            'naive' multiplies everything first and sums once.

    Returns:
        A new NumPy array with the output labels' axes.

    Raises:
        EinsumError: For invalid subscripts, operand count or shape
            mismatches, and unknown strategies.
    """
    try:
        if not isinstance(subscripts, str):
            raise EinsumError("Subscripts must be a string.")
        if len(operands) == 1 and isinstance(operands[0], (list, tuple)):
            operands = tuple(operands[0])
        if not operands:
            raise EinsumError("einsum() must be given at least one operand")
        if strategy not in _STRATEGIES:
            raise EinsumError(f"Unknown strategy '{strategy}', expected one of {_STRATEGIES}")
        _check_operands(operands, "Operand")

        shapes = tuple(tuple(operand.shape) for operand in operands)
        plan = _prepare_contraction_plan(subscripts, shapes)

        aligned = [_align_operand(operand, labels, plan)
                   for operand, labels in zip(operands, plan.input_labels)]

        if strategy == "pairwise":
            result = _evaluate_pairwise(aligned, plan)
        else:
            result = _evaluate_naive(aligned, plan)
        return np.asarray(result)

    # Contextualized Error Reporting
    except EinsumError as e:
        message = f'Error processing einsum subscripts "{subscripts}".'
        raise EinsumError(message + f"\n -> {e}") from e
    except Exception as e:
        message = f'Unexpected error processing einsum subscripts "{subscripts}".'
        tb_str = traceback.format_exc()
        raise EinsumError(message + f"\n Error Type: {type(e).__name__}\n Error Details: {e}\n Traceback:\n{tb_str}") from e


# --- Trilinear Combinator ---
def _trilinear(a: np.ndarray, b: np.ndarray, c: np.ndarray,
               expand_a: Sequence[int], expand_b: Sequence[int], expand_c: Sequence[int],
               sum_axes: Sequence[int], unroll_axis: int) -> np.ndarray:
    total_ndim = a.ndim + len(expand_a)
    for name, operand, expand in (("b", b, expand_b), ("c", c, expand_c)):
        if operand.ndim + len(expand) != total_ndim:
            raise EinsumError(f"Operand {name} has {operand.ndim} dims and {len(expand)} expanded axes, "
                              f"expected {total_ndim} dims in total")
    if not 0 <= unroll_axis < total_ndim:
        raise EinsumError(f"unroll_axis must be in [0, {total_ndim - 1}], got {unroll_axis}")

    expand_a_set = set(_normalize_axes(expand_a, total_ndim, "expand_a"))
    expand_b_set = set(_normalize_axes(expand_b, total_ndim, "expand_b"))
    expand_c_set = set(_normalize_axes(expand_c, total_ndim, "expand_c"))
    sum_set = set(_normalize_axes(sum_axes, total_ndim, "sum_axes"))

    sum_axes_ab: List[int] = []  # summed axes c does not have
    sum_axes_bc: List[int] = []
    output_shape: List[int] = []
    for axis in range(total_ndim):
        if axis in expand_a_set:
            a = np.expand_dims(a, axis)
        if axis in expand_b_set:
            b = np.expand_dims(b, axis)
        if axis in expand_c_set:
            c = np.expand_dims(c, axis)
        size = 1
        for operand in (a, b, c):
            extent = operand.shape[axis]
            if extent != 1:
                if size != 1 and size != extent:
                    raise EinsumError(f"Axis {axis} has incompatible sizes {size} and {extent} across operands")
                size = extent
        if axis in sum_set and axis != unroll_axis:
            if axis in expand_c_set:
                sum_axes_ab.append(axis)
            else:
                sum_axes_bc.append(axis)
        output_shape.append(1 if axis in sum_set else size)
        if axis == unroll_axis:
            unroll_size = size

    # Broadcast operands always read slab 0 along the unroll axis
    step_a = 0 if a.shape[unroll_axis] == 1 else 1
    step_b = 0 if b.shape[unroll_axis] == 1 else 1
    step_c = 0 if c.shape[unroll_axis] == 1 else 1

    output = np.zeros(output_shape, dtype=np.result_type(a, b, c))
    for k in range(unroll_size):
        buf = sumproduct_pair(a[_slice_along(unroll_axis, k * step_a)],
                              b[_slice_along(unroll_axis, k * step_b)],
                              sum_axes_ab, keepdims=True)
        buf = sumproduct_pair(buf, c[_slice_along(unroll_axis, k * step_c)], sum_axes_bc, keepdims=True)
        if unroll_axis in sum_set:
            output += buf
        else:
            output[_slice_along(unroll_axis, k)] += buf

    return _drop_axes(output, sum_set)


def trilinear(a: np.ndarray, b: np.ndarray, c: np.ndarray,
              expand_a: Sequence[int], expand_b: Sequence[int], expand_c: Sequence[int],
              sum_axes: Sequence[int], unroll_axis: int = 1) -> np.ndarray:
    """
    Computes `(a' * b' * c').sum(sum_axes)`, iterating over `unroll_axis`.

    `a'`, `b'` and `c'` are the operands with size-1 axes inserted at the
    indices in `expand_a`, `expand_b` and `expand_c`, after which all three
    share one rank. Instead of materializing the triple product, each index
    along `unroll_axis` is processed separately with two pairwise
    contractions, which bounds peak memory by one slab.

    Args:
        a, b, c: Input NumPy arrays.
        expand_a, expand_b, expand_c: Axes (in the common frame) missing
            from each operand.
        sum_axes: Axes (in the common frame) to sum out of the result.
        unroll_axis: Axis processed by explicit iteration.

    Returns:
        The result with `sum_axes` removed.

    Raises:
        EinsumError: For rank or extent mismatches and an out-of-range
            `unroll_axis`.
    """
    try:
        _check_operands((a, b, c), "Operand")
        return _trilinear(a, b, c, expand_a, expand_b, expand_c, sum_axes, unroll_axis)
    except EinsumError as e:
        raise EinsumError(f"Error processing trilinear.\n -> {e}") from e
    except Exception as e:
        tb_str = traceback.format_exc()
        raise EinsumError(f"Unexpected error processing trilinear.\n Error Type: {type(e).__name__}\n "
                          f"Error Details: {e}\n Traceback:\n{tb_str}") from e


def bilinear(x1: np.ndarray, x2: np.ndarray, weight: np.ndarray,
             bias: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Bilinear form `y[..., o] = sum_ij x1[..., i] * weight[o, i, j] * x2[..., j] + bias[o]`.

    Args:
        x1: Array of shape (*batch, in1).
        x2: Array of shape (*batch, in2).
        weight: Array of shape (out, in1, in2).
        bias: Optional array of shape (out,).

    Returns:
        Array of shape (*batch, out).

    Raises:
        EinsumError: When batch, feature or bias sizes disagree with `weight`.
    """
    try:
        _check_operands((x1, x2, weight) if bias is None else (x1, x2, weight, bias), "Input")
        if x1.ndim != x2.ndim:
            raise EinsumError(f"Input dimensions do not match: got {x1.ndim} and {x2.ndim}")
        if x1.ndim == 0:
            raise EinsumError("Inputs must have at least one dimension")
        if weight.ndim != 3:
            raise EinsumError(f"Weight must have 3 dimensions, got {weight.ndim}")
        for axis in range(x1.ndim - 1):
            if x1.shape[axis] != x2.shape[axis]:
                raise EinsumError(f"Input batch dimensions do not match at dim {axis}: "
                                  f"got {x1.shape[axis]} and {x2.shape[axis]}")
        if x1.shape[-1] != weight.shape[1]:
            raise EinsumError(f"Input1 size does not match weight size: got {x1.shape[-1]} "
                              f"but expected {weight.shape[1]}")
        if x2.shape[-1] != weight.shape[2]:
            raise EinsumError(f"Input2 size does not match weight size: got {x2.shape[-1]} "
                              f"but expected {weight.shape[2]}")
        if bias is not None and (bias.ndim != 1 or bias.shape[0] != weight.shape[0]):
            raise EinsumError(f"Bias size does not match weight size: got shape {bias.shape} "
                              f"but expected ({weight.shape[0]},)")

        output_shape = x1.shape[:-1] + (weight.shape[0],)
        batch = _prod(x1.shape[:-1])
        x1_flat = x1.reshape(batch, x1.shape[-1])
        x2_flat = x2.reshape(batch, x2.shape[-1])
        # Common frame: [n, o, i, j]
        output = _trilinear(x1_flat, weight, x2_flat, [1, 3], [0], [1, 2], [2, 3], unroll_axis=1)
        output = output.reshape(output_shape)
        if bias is not None:
            output = output + bias
        return output

    except EinsumError as e:
        raise EinsumError(f"Error processing bilinear.\n -> {e}") from e
    except Exception as e:
        tb_str = traceback.format_exc()
        raise EinsumError(f"Unexpected error processing bilinear.\n Error Type: {type(e).__name__}\n "
                          f"Error Details: {e}\n Traceback:\n{tb_str}") from e


# --- Explicit-Axis Contraction ---
def tensordot(a: np.ndarray, b: np.ndarray, dims_a: Sequence[int], dims_b: Sequence[int]) -> np.ndarray:
    """
    Contracts axis `dims_a[k]` of `a` with axis `dims_b[k]` of `b` for every k.

    The result holds the remaining axes of `a` followed by the remaining axes
    of `b`, each in their original order. A pair where one side has size 1
    is handled by summing the other side along its axis.

    Examples:
        `tensordot(a, b, [1], [0])` # Matrix multiply for 2-D a, b
        `tensordot(a, b, [1, 2], [0, 1])`

    Args:
        a: First NumPy array.
        b: Second NumPy array.
        dims_a: Axes of `a` to contract (negative indices allowed).
        dims_b: Matching axes of `b`.

    Returns:
        The contracted array.

    Raises:
        EinsumError: When the axis lists differ in length, contain invalid
            indices, or pair up non-broadcastable sizes.
    """
    try:
        _check_operands((a, b), "Operand")
        if len(dims_a) != len(dims_b):
            raise EinsumError(f"Both dimension lists should have same length, got {len(dims_a)} and {len(dims_b)}")
        dims_a = _normalize_axes(dims_a, a.ndim, "dims_a")
        dims_b = _normalize_axes(dims_b, b.ndim, "dims_b")

        for axis_a, axis_b in zip(dims_a, dims_b):
            size_a, size_b = a.shape[axis_a], b.shape[axis_b]
            if size_a != 1 and size_b != 1 and size_a != size_b:
                raise EinsumError(f"Contracted dimensions need to match, but first has size {size_a} "
                                  f"in dim {axis_a} and second has size {size_b} in dim {axis_b}")

        contracted_size = 1
        left, right = a, b
        for axis_a, axis_b in zip(dims_a, dims_b):
            size_a, size_b = a.shape[axis_a], b.shape[axis_b]
            if size_b == 1:
                left = left.sum(axis=axis_a, keepdims=True)
            elif size_a == 1:
                right = right.sum(axis=axis_b, keepdims=True)
            else:
                contracted_size *= size_a

        remaining_a = [axis for axis in range(a.ndim) if axis not in dims_a]
        remaining_b = [axis for axis in range(b.ndim) if axis not in dims_b]
        result_shape = [left.shape[axis] for axis in remaining_a] + [right.shape[axis] for axis in remaining_b]

        outer_a = _prod([left.shape[axis] for axis in remaining_a])
        outer_b = _prod([right.shape[axis] for axis in remaining_b])
        left = left.transpose(remaining_a + dims_a).reshape(outer_a, contracted_size)
        right = right.transpose(dims_b + remaining_b).reshape(contracted_size, outer_b)
        return np.matmul(left, right).reshape(result_shape)

    except EinsumError as e:
        raise EinsumError(f"Error processing tensordot.\n -> {e}") from e
    except Exception as e:
        tb_str = traceback.format_exc()
        raise EinsumError(f"Unexpected error processing tensordot.\n Error Type: {type(e).__name__}\n "
                          f"Error Details: {e}\n Traceback:\n{tb_str}") from e
