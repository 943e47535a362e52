"""Built-in reference models for standard ERP end-to-end processes.

O2C, P2P, R2R, A2R, H2R, P2M, M2S. Each model covers the happy path plus
the common exception paths; SLA targets are best-practice benchmarks.
"""

from typing import Dict, Iterable, List, Tuple

from process_mining.reference_models import ModelEdge, ReferenceModel, SLATarget, transition_key


def _edges(rows: Iterable[Tuple[str, str, str]]) -> List[ModelEdge]:
    return [ModelEdge(source, target, kind) for source, target, kind in rows]


def _slas(rows: Iterable[Tuple[str, str, float, str, str]]) -> Dict[str, SLATarget]:
    return {transition_key(a, b): SLATarget(target, unit, severity) for a, b, target, unit, severity in rows}


# =============================================================================
# O2C - Order to Cash
# =============================================================================

O2C = ReferenceModel(
    id="O2C",
    name="Order to Cash",
    activities=[
        "Create Sales Order", "Change Sales Order", "Credit Check", "Approve Credit",
        "Block Order", "Release Order", "Create Delivery", "Pick", "Pack", "Goods Issue",
        "Create Invoice", "Send Invoice", "Dunning", "Payment Received", "Clear Invoice",
    ],
    edges=_edges([
        ("Create Sales Order", "Credit Check", "sequence"),
        ("Credit Check", "Create Delivery", "sequence"),
        ("Create Delivery", "Pick", "sequence"),
        ("Pick", "Pack", "sequence"),
        ("Pack", "Goods Issue", "sequence"),
        ("Goods Issue", "Create Invoice", "sequence"),
        ("Create Invoice", "Send Invoice", "sequence"),
        ("Send Invoice", "Payment Received", "sequence"),
        ("Payment Received", "Clear Invoice", "sequence"),
        # credit block
        ("Credit Check", "Block Order", "choice"),
        ("Block Order", "Approve Credit", "sequence"),
        ("Approve Credit", "Release Order", "sequence"),
        ("Release Order", "Create Delivery", "sequence"),
        # order changes
        ("Create Sales Order", "Change Sales Order", "choice"),
        ("Change Sales Order", "Credit Check", "sequence"),
        ("Create Sales Order", "Create Delivery", "parallel"),
        # billing shortcuts: delivery-based billing, invoice without dispatch step
        ("Create Delivery", "Create Invoice", "choice"),
        ("Create Invoice", "Payment Received", "choice"),
        # dunning
        ("Send Invoice", "Dunning", "choice"),
        ("Dunning", "Payment Received", "sequence"),
        ("Dunning", "Dunning", "choice"),
    ]),
    start_activities=["Create Sales Order"],
    end_activities=["Clear Invoice", "Payment Received"],
    sla_targets=_slas([
        ("Create Sales Order", "Create Delivery", 3, "days", "warning"),
        ("Create Delivery", "Goods Issue", 1, "days", "warning"),
        ("Goods Issue", "Create Invoice", 2, "days", "warning"),
        ("Create Invoice", "Payment Received", 30, "days", "critical"),
        ("Create Sales Order", "Payment Received", 45, "days", "critical"),
        ("Create Sales Order", "Clear Invoice", 50, "days", "critical"),
        ("Credit Check", "Block Order", 1, "hours", "warning"),
        ("Block Order", "Release Order", 2, "days", "warning"),
    ]),
    critical_transitions=[
        transition_key("Goods Issue", "Create Invoice"),
        transition_key("Create Invoice", "Payment Received"),
        transition_key("Payment Received", "Clear Invoice"),
        transition_key("Create Sales Order", "Credit Check"),
    ],
)


# =============================================================================
# P2P - Procure to Pay
# =============================================================================

P2P = ReferenceModel(
    id="P2P",
    name="Procure to Pay",
    activities=[
        "Create Purchase Requisition", "Approve Purchase Requisition", "Reject Purchase Requisition",
        "Create Purchase Order", "Approve Purchase Order", "Send Purchase Order", "Goods Receipt",
        "Invoice Receipt", "Three-Way Match", "Block Invoice", "Release Invoice",
        "Schedule Payment", "Payment Run", "Payment Clearing",
    ],
    edges=_edges([
        ("Create Purchase Requisition", "Approve Purchase Requisition", "sequence"),
        ("Approve Purchase Requisition", "Create Purchase Order", "sequence"),
        ("Create Purchase Order", "Approve Purchase Order", "sequence"),
        ("Approve Purchase Order", "Send Purchase Order", "sequence"),
        ("Send Purchase Order", "Goods Receipt", "sequence"),
        ("Goods Receipt", "Invoice Receipt", "sequence"),
        ("Invoice Receipt", "Three-Way Match", "sequence"),
        ("Three-Way Match", "Schedule Payment", "sequence"),
        ("Schedule Payment", "Payment Run", "sequence"),
        ("Payment Run", "Payment Clearing", "sequence"),
        ("Create Purchase Requisition", "Reject Purchase Requisition", "choice"),
        # invoice block
        ("Three-Way Match", "Block Invoice", "choice"),
        ("Block Invoice", "Release Invoice", "sequence"),
        ("Release Invoice", "Schedule Payment", "sequence"),
        ("Create Purchase Order", "Send Purchase Order", "parallel"),
        # service PO: invoice before goods
        ("Send Purchase Order", "Invoice Receipt", "parallel"),
        # evaluated receipt settlement
        ("Goods Receipt", "Three-Way Match", "parallel"),
    ]),
    start_activities=["Create Purchase Requisition", "Create Purchase Order"],
    end_activities=["Payment Clearing", "Reject Purchase Requisition"],
    sla_targets=_slas([
        ("Create Purchase Requisition", "Approve Purchase Requisition", 2, "days", "warning"),
        ("Approve Purchase Requisition", "Create Purchase Order", 3, "days", "warning"),
        ("Create Purchase Order", "Send Purchase Order", 1, "days", "warning"),
        ("Send Purchase Order", "Goods Receipt", 14, "days", "warning"),
        ("Goods Receipt", "Invoice Receipt", 5, "days", "warning"),
        ("Invoice Receipt", "Three-Way Match", 2, "days", "warning"),
        ("Three-Way Match", "Schedule Payment", 3, "days", "warning"),
        ("Invoice Receipt", "Payment Clearing", 30, "days", "critical"),
        ("Create Purchase Requisition", "Payment Clearing", 60, "days", "critical"),
        ("Block Invoice", "Release Invoice", 5, "days", "warning"),
    ]),
    critical_transitions=[
        transition_key("Goods Receipt", "Invoice Receipt"),
        transition_key("Invoice Receipt", "Three-Way Match"),
        transition_key("Three-Way Match", "Schedule Payment"),
        transition_key("Payment Run", "Payment Clearing"),
    ],
)


# =============================================================================
# R2R - Record to Report
# =============================================================================

R2R = ReferenceModel(
    id="R2R",
    name="Record to Report",
    activities=[
        "Create Journal Entry", "Park Journal Entry", "Approve Journal Entry", "Post Journal Entry",
        "Reverse Journal Entry", "Clear Line Item", "Run Automatic Clearing", "Period Close Posting",
        "Execute Reconciliation", "Close Period",
    ],
    edges=_edges([
        ("Create Journal Entry", "Post Journal Entry", "sequence"),
        ("Post Journal Entry", "Clear Line Item", "sequence"),
        ("Clear Line Item", "Run Automatic Clearing", "sequence"),
        ("Run Automatic Clearing", "Period Close Posting", "sequence"),
        ("Period Close Posting", "Execute Reconciliation", "sequence"),
        ("Execute Reconciliation", "Close Period", "sequence"),
        # park and approve
        ("Create Journal Entry", "Park Journal Entry", "choice"),
        ("Park Journal Entry", "Approve Journal Entry", "sequence"),
        ("Approve Journal Entry", "Post Journal Entry", "sequence"),
        # reversal
        ("Post Journal Entry", "Reverse Journal Entry", "choice"),
        ("Reverse Journal Entry", "Create Journal Entry", "sequence"),
        ("Post Journal Entry", "Run Automatic Clearing", "parallel"),
        ("Period Close Posting", "Close Period", "parallel"),
    ]),
    start_activities=["Create Journal Entry"],
    end_activities=["Close Period"],
    sla_targets=_slas([
        ("Create Journal Entry", "Post Journal Entry", 1, "days", "warning"),
        ("Park Journal Entry", "Approve Journal Entry", 1, "days", "warning"),
        ("Approve Journal Entry", "Post Journal Entry", 4, "hours", "warning"),
        ("Period Close Posting", "Close Period", 5, "days", "critical"),
        ("Execute Reconciliation", "Close Period", 2, "days", "critical"),
        ("Post Journal Entry", "Clear Line Item", 3, "days", "warning"),
        ("Run Automatic Clearing", "Period Close Posting", 1, "days", "warning"),
    ]),
    critical_transitions=[
        transition_key("Approve Journal Entry", "Post Journal Entry"),
        transition_key("Execute Reconciliation", "Close Period"),
        transition_key("Period Close Posting", "Close Period"),
    ],
)


# =============================================================================
# A2R - Acquire to Retire
# =============================================================================

A2R = ReferenceModel(
    id="A2R",
    name="Acquire to Retire",
    activities=[
        "Create Asset Master", "Post Asset Acquisition", "Capitalize Asset", "Post Depreciation",
        "Transfer Asset", "Revalue Asset", "Retire Asset", "Scrap Asset", "Settle Asset",
    ],
    edges=_edges([
        ("Create Asset Master", "Post Asset Acquisition", "sequence"),
        ("Post Asset Acquisition", "Capitalize Asset", "sequence"),
        ("Capitalize Asset", "Post Depreciation", "sequence"),
        ("Post Depreciation", "Retire Asset", "sequence"),
        ("Retire Asset", "Settle Asset", "sequence"),
        # monthly depreciation run
        ("Post Depreciation", "Post Depreciation", "choice"),
        ("Post Depreciation", "Transfer Asset", "choice"),
        ("Transfer Asset", "Post Depreciation", "sequence"),
        ("Post Depreciation", "Revalue Asset", "choice"),
        ("Revalue Asset", "Post Depreciation", "sequence"),
        ("Post Depreciation", "Scrap Asset", "choice"),
        ("Scrap Asset", "Settle Asset", "sequence"),
        ("Capitalize Asset", "Retire Asset", "choice"),
        ("Capitalize Asset", "Scrap Asset", "choice"),
    ]),
    start_activities=["Create Asset Master"],
    end_activities=["Settle Asset"],
    sla_targets=_slas([
        ("Create Asset Master", "Post Asset Acquisition", 2, "days", "warning"),
        ("Post Asset Acquisition", "Capitalize Asset", 5, "days", "warning"),
        ("Capitalize Asset", "Post Depreciation", 30, "days", "warning"),
        ("Retire Asset", "Settle Asset", 5, "days", "warning"),
        ("Scrap Asset", "Settle Asset", 5, "days", "warning"),
        ("Create Asset Master", "Capitalize Asset", 10, "days", "critical"),
    ]),
    critical_transitions=[
        transition_key("Post Asset Acquisition", "Capitalize Asset"),
        transition_key("Capitalize Asset", "Post Depreciation"),
        transition_key("Retire Asset", "Settle Asset"),
    ],
)


# =============================================================================
# H2R - Hire to Retire
# =============================================================================

H2R = ReferenceModel(
    id="H2R",
    name="Hire to Retire",
    activities=[
        "Create Employee", "Hire Action", "Assign Organizational Unit", "Assign Position",
        "Enter Basic Pay", "Onboard", "Change Position", "Promote", "Transfer", "Adjust Pay",
        "Process Payroll", "Terminate",
    ],
    edges=_edges([
        ("Create Employee", "Hire Action", "sequence"),
        ("Hire Action", "Assign Organizational Unit", "sequence"),
        ("Assign Organizational Unit", "Assign Position", "sequence"),
        ("Assign Position", "Enter Basic Pay", "sequence"),
        ("Enter Basic Pay", "Onboard", "sequence"),
        ("Hire Action", "Assign Position", "parallel"),
        ("Hire Action", "Enter Basic Pay", "parallel"),
        ("Onboard", "Process Payroll", "sequence"),
        # career changes
        ("Onboard", "Change Position", "choice"),
        ("Onboard", "Promote", "choice"),
        ("Onboard", "Transfer", "choice"),
        ("Onboard", "Adjust Pay", "choice"),
        ("Change Position", "Process Payroll", "sequence"),
        ("Promote", "Adjust Pay", "sequence"),
        ("Adjust Pay", "Process Payroll", "sequence"),
        ("Transfer", "Assign Organizational Unit", "sequence"),
        # recurring payroll
        ("Process Payroll", "Process Payroll", "choice"),
        ("Process Payroll", "Change Position", "choice"),
        ("Process Payroll", "Promote", "choice"),
        ("Process Payroll", "Transfer", "choice"),
        ("Process Payroll", "Adjust Pay", "choice"),
        ("Process Payroll", "Terminate", "sequence"),
        ("Onboard", "Terminate", "choice"),
    ]),
    start_activities=["Create Employee"],
    end_activities=["Terminate"],
    sla_targets=_slas([
        ("Create Employee", "Hire Action", 1, "days", "warning"),
        ("Hire Action", "Onboard", 14, "days", "critical"),
        ("Enter Basic Pay", "Onboard", 3, "days", "warning"),
        ("Onboard", "Process Payroll", 30, "days", "warning"),
        ("Process Payroll", "Process Payroll", 30, "days", "warning"),
        ("Promote", "Adjust Pay", 5, "days", "warning"),
        ("Change Position", "Process Payroll", 30, "days", "warning"),
        ("Process Payroll", "Terminate", 30, "days", "warning"),
    ]),
    critical_transitions=[
        transition_key("Hire Action", "Onboard"),
        transition_key("Enter Basic Pay", "Onboard"),
        transition_key("Onboard", "Process Payroll"),
        transition_key("Process Payroll", "Terminate"),
    ],
)


# =============================================================================
# P2M - Plan to Manufacture
# =============================================================================

P2M = ReferenceModel(
    id="P2M",
    name="Plan to Manufacture",
    activities=[
        "Create Production Order", "Plan Order", "Release Production Order", "Print Shop Floor Papers",
        "Issue Materials", "Start Operation", "Confirm Operation", "Partial Confirmation",
        "Goods Receipt", "Technically Complete", "Close Order", "Settle Order",
    ],
    edges=_edges([
        ("Create Production Order", "Plan Order", "sequence"),
        ("Plan Order", "Release Production Order", "sequence"),
        ("Release Production Order", "Print Shop Floor Papers", "sequence"),
        ("Release Production Order", "Issue Materials", "parallel"),
        ("Print Shop Floor Papers", "Issue Materials", "sequence"),
        ("Issue Materials", "Start Operation", "sequence"),
        ("Start Operation", "Confirm Operation", "sequence"),
        ("Confirm Operation", "Goods Receipt", "sequence"),
        ("Goods Receipt", "Technically Complete", "sequence"),
        ("Technically Complete", "Close Order", "sequence"),
        ("Close Order", "Settle Order", "sequence"),
        # multi-operation orders
        ("Start Operation", "Partial Confirmation", "choice"),
        ("Partial Confirmation", "Start Operation", "sequence"),
        ("Partial Confirmation", "Confirm Operation", "sequence"),
        # backflush
        ("Confirm Operation", "Issue Materials", "parallel"),
        ("Goods Receipt", "Close Order", "parallel"),
        ("Confirm Operation", "Start Operation", "choice"),
    ]),
    start_activities=["Create Production Order"],
    end_activities=["Settle Order"],
    sla_targets=_slas([
        ("Create Production Order", "Plan Order", 1, "days", "warning"),
        ("Plan Order", "Release Production Order", 2, "days", "warning"),
        ("Release Production Order", "Issue Materials", 1, "days", "critical"),
        ("Issue Materials", "Start Operation", 4, "hours", "warning"),
        ("Start Operation", "Confirm Operation", 5, "days", "warning"),
        ("Confirm Operation", "Goods Receipt", 1, "days", "warning"),
        ("Goods Receipt", "Technically Complete", 2, "days", "warning"),
        ("Technically Complete", "Settle Order", 5, "days", "warning"),
        ("Release Production Order", "Goods Receipt", 10, "days", "critical"),
    ]),
    critical_transitions=[
        transition_key("Release Production Order", "Issue Materials"),
        transition_key("Confirm Operation", "Goods Receipt"),
        transition_key("Goods Receipt", "Technically Complete"),
        transition_key("Close Order", "Settle Order"),
    ],
)


# =============================================================================
# M2S - Maintain to Settle
# =============================================================================

M2S = ReferenceModel(
    id="M2S",
    name="Maintain to Settle",
    activities=[
        "Create Notification", "Classify Notification", "Approve Notification", "Create Work Order",
        "Plan Work Order", "Release Work Order", "Print Work Order", "Issue Spare Parts",
        "Execute Maintenance", "Confirm Operations", "Technically Complete", "Settle Work Order",
    ],
    edges=_edges([
        ("Create Notification", "Classify Notification", "sequence"),
        ("Classify Notification", "Approve Notification", "sequence"),
        ("Approve Notification", "Create Work Order", "sequence"),
        ("Create Work Order", "Plan Work Order", "sequence"),
        ("Plan Work Order", "Release Work Order", "sequence"),
        ("Release Work Order", "Print Work Order", "sequence"),
        ("Print Work Order", "Issue Spare Parts", "sequence"),
        ("Issue Spare Parts", "Execute Maintenance", "sequence"),
        ("Execute Maintenance", "Confirm Operations", "sequence"),
        ("Confirm Operations", "Technically Complete", "sequence"),
        ("Technically Complete", "Settle Work Order", "sequence"),
        # emergency maintenance
        ("Create Notification", "Create Work Order", "parallel"),
        ("Approve Notification", "Release Work Order", "parallel"),
        ("Release Work Order", "Issue Spare Parts", "parallel"),
        ("Release Work Order", "Execute Maintenance", "parallel"),
        ("Print Work Order", "Execute Maintenance", "parallel"),
        ("Confirm Operations", "Execute Maintenance", "choice"),
        ("Execute Maintenance", "Issue Spare Parts", "choice"),
    ]),
    start_activities=["Create Notification"],
    end_activities=["Settle Work Order"],
    sla_targets=_slas([
        ("Create Notification", "Classify Notification", 4, "hours", "warning"),
        ("Classify Notification", "Approve Notification", 1, "days", "warning"),
        ("Create Notification", "Create Work Order", 1, "days", "critical"),
        ("Approve Notification", "Create Work Order", 5, "days", "warning"),
        ("Plan Work Order", "Release Work Order", 3, "days", "warning"),
        ("Release Work Order", "Execute Maintenance", 5, "days", "warning"),
        ("Execute Maintenance", "Confirm Operations", 2, "days", "warning"),
        ("Confirm Operations", "Technically Complete", 1, "days", "warning"),
        ("Technically Complete", "Settle Work Order", 5, "days", "warning"),
        ("Create Notification", "Settle Work Order", 30, "days", "critical"),
    ]),
    critical_transitions=[
        transition_key("Create Notification", "Create Work Order"),
        transition_key("Release Work Order", "Execute Maintenance"),
        transition_key("Execute Maintenance", "Confirm Operations"),
        transition_key("Technically Complete", "Settle Work Order"),
    ],
)


BUILTIN_MODELS = [O2C, P2P, R2R, A2R, H2R, P2M, M2S]
