# Conversation Prompt Builders
# Message text and the structured action prompt written by each transition

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from database.collaboration_models import Conversation, FlowStateDB, MessageTypeDB
from schemas.collaboration import (
    ActionPrompt,
    ButtonStyle,
    InputField,
    PaymentBreakdown,
    PaymentOrder,
    PromptButton,
    VisibleTo,
)
from services.money import format_inr


@dataclass
class PromptContext:
    """Inputs a builder may read. The conversation already carries the new state."""
    conversation: Conversation
    target: FlowStateDB
    payload: object = None
    breakdown: Optional[PaymentBreakdown] = None
    order: Optional[PaymentOrder] = None
    influencer_name: str = "there"
    listing_title: str = ""
    listing_kind: str = "bid"
    amount_paise: Optional[int] = None
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def flow_data(self) -> dict:
        return self.conversation.flow_data or {}


@dataclass
class FlowMessage:
    text: str
    prompt: Optional[ActionPrompt] = None
    message_type: Optional[MessageTypeDB] = None  # None lets the engine decide


Builder = Callable[[PromptContext], FlowMessage]


def _button(id: str, text: str, style: ButtonStyle, data: Optional[dict] = None) -> PromptButton:
    return PromptButton(id=id, text=text, style=style, action=id, data=data)


def _price(ctx: PromptContext, key: str) -> str:
    return format_inr(ctx.flow_data.get(key) or 0)


def _feedback(ctx: PromptContext) -> Optional[str]:
    return getattr(ctx.payload, "feedback", None)


# =========================================================================
# CONNECTION
# =========================================================================

def connection_request(ctx: PromptContext) -> FlowMessage:
    if ctx.listing_kind == "campaign":
        amount_line = f"The campaign budget is **{format_inr(ctx.amount_paise or 0)}**."
    else:
        amount_line = f"Your proposed amount of **{format_inr(ctx.amount_paise or 0)}** looks good."
    text = (
        f"🤝 **Interest in Collaboration**\n\nHi **{ctx.influencer_name}**! I'm interested in connecting "
        f"with you for my {ctx.listing_kind} **\"{ctx.listing_title}\"**.\n\n{amount_line} Let's discuss the "
        f"project details and move forward with this collaboration."
    )
    prompt = ActionPrompt(
        title="🎯 **Connection Response**",
        subtitle="Would you like to accept this connection request?",
        visible_to=VisibleTo.INFLUENCER,
        flow_state=ctx.target,
        message_type="influencer_connection_response",
        buttons=[
            _button("accept_connection", "Accept Connection", ButtonStyle.SUCCESS),
            _button("reject_connection", "Reject Connection", ButtonStyle.DANGER),
        ],
    )
    return FlowMessage(text, prompt)


def connection_accepted(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🎯 **Project Details Input**",
        subtitle="Enter the details and requirements of the project:",
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="brand_owner_project_details",
        buttons=[_button("send_project_details", "Send Project Details", ButtonStyle.SUCCESS)],
        input_field=InputField(
            id="project_details",
            type="textarea",
            placeholder="Describe the project, deliverables and timeline...",
            required=True,
            maxLength=1000,
        ),
    )
    return FlowMessage(
        "✅ **Connection Accepted**\n\nInfluencer has accepted your connection request. "
        "Please provide project details and requirements.",
        prompt,
    )


def connection_rejected(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "❌ **Connection Rejected**\n\nInfluencer has rejected your connection request. The chat is now closed."
    )


# =========================================================================
# PROJECT DETAILS
# =========================================================================

def project_details_sent(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🎯 **Project Review**",
        subtitle="Review the project requirements and choose whether to continue:",
        visible_to=VisibleTo.INFLUENCER,
        flow_state=ctx.target,
        message_type="influencer_project_review",
        buttons=[
            _button("accept_project_details", "Accept Project Requirements", ButtonStyle.SUCCESS),
            _button("reject_project_details", "Deny Project Requirements", ButtonStyle.DANGER),
        ],
    )
    return FlowMessage(
        f"📋 **Project Details & Requirements**\n\n{ctx.flow_data.get('project_details', '')}\n\n"
        f"Please review the requirements and respond.",
        prompt,
    )


def _price_input(ctx: PromptContext, title: str, subtitle: str, action: str, text: str,
                 visible_to: VisibleTo, message_type: str) -> ActionPrompt:
    return ActionPrompt(
        title=title,
        subtitle=subtitle,
        visible_to=visible_to,
        flow_state=ctx.target,
        message_type=message_type,
        buttons=[_button(action, text, ButtonStyle.SUCCESS)],
        input_field=InputField(
            id="price",
            type="number",
            placeholder="Enter amount in ₹",
            required=True,
            min=1,
        ),
    )


def project_accepted(ctx: PromptContext) -> FlowMessage:
    prompt = _price_input(
        ctx,
        title="🎯 **Price Offer Input**",
        subtitle="Enter the offering price for this project:",
        action="send_price_offer",
        text="Send Price Offer",
        visible_to=VisibleTo.BRAND_OWNER,
        message_type="brand_owner_pricing",
    )
    return FlowMessage(
        "✅ **Project Requirements Accepted**\n\nInfluencer has accepted the project requirements. "
        "Please provide your price offer.",
        prompt,
    )


def project_rejected(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "❌ **Project Requirements Denied**\n\nInfluencer has denied the project requirements. The chat is now closed."
    )


# =========================================================================
# PRICING AND NEGOTIATION
# =========================================================================

def _offer_response_prompt(ctx: PromptContext) -> ActionPrompt:
    offer = ctx.flow_data.get("price_offer")
    return ActionPrompt(
        title="🎯 **Price Offer Response**",
        subtitle="Choose how you'd like to respond to this price offer:",
        visible_to=VisibleTo.INFLUENCER,
        flow_state=ctx.target,
        message_type="influencer_price_response",
        buttons=[
            _button("accept_price", "Accept Offer", ButtonStyle.SUCCESS, {"price_paise": offer}),
            _button("reject_price", "Reject Offer", ButtonStyle.DANGER),
            _button("negotiate_price", "Negotiate Price", ButtonStyle.WARNING),
        ],
    )


def price_offered(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        f"💰 **Price Offer**\n\nBrand owner has offered: **{_price(ctx, 'price_offer')}**\n\n"
        f"Please review and respond to this offer.",
        _offer_response_prompt(ctx),
    )


def _payment_prompt(ctx: PromptContext) -> ActionPrompt:
    return ActionPrompt(
        title="🎯 **Payment Required**",
        subtitle="Complete the payment to finalize the collaboration:",
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="brand_owner_payment",
        buttons=[_button("proceed_to_payment", "Proceed to Payment", ButtonStyle.SUCCESS)],
        payment_breakdown=ctx.breakdown,
    )


def price_accepted(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        f"✅ **Price Offer Accepted**\n\nInfluencer has agreed to the offer of **{_price(ctx, 'agreed_price')}**. "
        f"Please proceed with payment to complete the collaboration.",
        _payment_prompt(ctx),
    )


def price_rejected(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "❌ **Price Offer Rejected**\n\nInfluencer has rejected your price offer. The chat is now closed."
    )


def negotiation_requested(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🎯 **Negotiation Response**",
        subtitle="The influencer would like to negotiate. Do you agree?",
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="brand_owner_negotiation",
        buttons=[
            _button("accept_negotiation", "Agree to Negotiate", ButtonStyle.SUCCESS),
            _button("reject_negotiation", "Reject Negotiation", ButtonStyle.DANGER),
        ],
    )
    return FlowMessage(
        "🤝 **Negotiation Request**\n\nInfluencer wants to negotiate the price offer. Please respond to this request.",
        prompt,
    )


def _counter_offer_prompt(ctx: PromptContext) -> ActionPrompt:
    return _price_input(
        ctx,
        title="🎯 **Counter Offer**",
        subtitle="Enter the price you would like for this project:",
        action="send_negotiated_price",
        text="Send Counter Offer",
        visible_to=VisibleTo.INFLUENCER,
        message_type="influencer_negotiation_input",
    )


def negotiation_accepted(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "🤝 **Negotiation Accepted**\n\nBrand owner has agreed to negotiate. Please enter your counter offer.",
        _counter_offer_prompt(ctx),
    )


def negotiation_rejected(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        f"❌ **Negotiation Declined**\n\nBrand owner has declined to negotiate. The original offer of "
        f"**{_price(ctx, 'price_offer')}** still stands.",
        _offer_response_prompt(ctx),
    )


def negotiated_price_sent(ctx: PromptContext) -> FlowMessage:
    counter = ctx.flow_data.get("negotiated_price")
    prompt = ActionPrompt(
        title="🎯 **Counter Offer Review**",
        subtitle="Accept the counter offer or ask for another one:",
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="brand_owner_negotiation_review",
        buttons=[
            _button("accept_negotiated_price", "Accept Counter Offer", ButtonStyle.SUCCESS, {"price_paise": counter}),
            _button("reject_negotiated_price", "Reject Counter Offer", ButtonStyle.DANGER),
        ],
    )
    return FlowMessage(
        f"💰 **Counter Offer**\n\nInfluencer has proposed: **{_price(ctx, 'negotiated_price')}**\n\n"
        f"Please review and respond.",
        prompt,
    )


def negotiated_price_rejected(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "❌ **Counter Offer Rejected**\n\nBrand owner has rejected the counter offer. Please send a new one.",
        _counter_offer_prompt(ctx),
    )


def negotiated_price_accepted(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        f"✅ **Counter Offer Accepted**\n\nThe counter offer of **{_price(ctx, 'agreed_price')}** is agreed. "
        f"Please proceed with payment to complete the collaboration.",
        _payment_prompt(ctx),
    )


# =========================================================================
# PAYMENT
# =========================================================================

def payment_order_created(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🎯 **Payment Required**",
        subtitle="Complete the payment to finalize the collaboration:",
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="payment_order",
        buttons=[_button("pay_now", "Pay Now", ButtonStyle.SUCCESS, {"order_id": ctx.order.order_id if ctx.order else None})],
        payment_breakdown=ctx.breakdown,
        payment_order=ctx.order,
        auto_trigger=True,
    )
    total = ctx.breakdown.display.total if ctx.breakdown else ""
    return FlowMessage(
        f"💳 **Payment Order Created**\n\nPlease complete the payment of **{total}** to proceed with the collaboration.",
        prompt,
    )


def payment_confirmed(ctx: PromptContext) -> FlowMessage:
    total = ctx.breakdown.display.total if ctx.breakdown else ""
    net = ctx.breakdown.display.net if ctx.breakdown else ""
    return FlowMessage(
        f"✅ **Payment Completed Successfully**\n\nPayment of **{total}** has been processed. "
        f"**{net}** is held in escrow until the work is approved.",
        message_type=MessageTypeDB.SYSTEM_PAYMENT_UPDATE,
    )


def start_work_prompt(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🚀 **Start Working**",
        subtitle="Payment completed! You can now begin your work on this project.",
        visible_to=VisibleTo.INFLUENCER,
        flow_state=ctx.target,
        message_type="work_start_prompt",
        buttons=[_button("start_work", "Start Working", ButtonStyle.SUCCESS)],
    )
    return FlowMessage(
        "🎯 **Work Phase Started**\n\nPayment has been completed! You can now start working on the project. "
        "Please begin your work and submit it when ready.",
        prompt,
    )


# =========================================================================
# WORK
# =========================================================================

def _submit_prompt(ctx: PromptContext, action: str, title: str, subtitle: str) -> ActionPrompt:
    return ActionPrompt(
        title=title,
        subtitle=subtitle,
        visible_to=VisibleTo.INFLUENCER,
        flow_state=ctx.target,
        message_type="work_submission",
        buttons=[_button(action, "Submit Work", ButtonStyle.SUCCESS)],
        input_field=InputField(
            id="deliverables",
            type="textarea",
            placeholder="Describe the deliverables and add links...",
            required=True,
            maxLength=5000,
        ),
    )


def work_started(ctx: PromptContext) -> FlowMessage:
    return FlowMessage(
        "🚀 **Work Started**\n\nI've started working on the project. I'll submit the completed work when ready.",
        _submit_prompt(ctx, "submit_work", "📤 **Submit Work**", "Submit your work when it is ready for review:"),
    )


def work_submitted(ctx: PromptContext) -> FlowMessage:
    submission = ctx.flow_data.get("work_submission") or {}
    conversation = ctx.conversation
    buttons: List[PromptButton] = [_button("approve_work", "Approve Work", ButtonStyle.SUCCESS)]
    if ctx.target == FlowStateDB.WORK_FINAL_REVIEW:
        buttons.append(_button("reject_final_work", "Reject Work", ButtonStyle.DANGER))
        subtitle = "This is the final allowed revision. Approve the work or reject it:"
    else:
        remaining = conversation.max_revisions - conversation.revision_count
        buttons.append(_button("request_revision", "Request Revision", ButtonStyle.WARNING, {"revisions_left": remaining}))
        subtitle = "Please review the submitted work and provide feedback:"
    prompt = ActionPrompt(
        title="🎯 **Work Review Required**",
        subtitle=subtitle,
        visible_to=VisibleTo.BRAND_OWNER,
        flow_state=ctx.target,
        message_type="work_review",
        buttons=buttons,
        input_field=InputField(id="feedback", type="textarea", placeholder="Feedback for the influencer",
                               required=False, maxLength=2000),
    )
    text = f"📤 **Work Submitted**\n\n**Deliverables:** {submission.get('deliverables', '')}"
    if submission.get("description"):
        text += f"\n\n**Description:** {submission['description']}"
    if submission.get("notes"):
        text += f"\n\n**Notes:** {submission['notes']}"
    return FlowMessage(text, prompt)


def revision_requested(ctx: PromptContext) -> FlowMessage:
    conversation = ctx.conversation
    text = (
        f"📝 **Revision Requested** ({conversation.revision_count}/{conversation.max_revisions})\n\n"
        f"**Feedback:** {_feedback(ctx)}"
    )
    return FlowMessage(
        text,
        _submit_prompt(ctx, "resubmit_work", "📝 **Work Revision Required**",
                       "Please address the feedback and resubmit your work:"),
    )


def work_approved(ctx: PromptContext) -> FlowMessage:
    text = "🎉 **Work Approved**\n\nThe work has been approved and the escrowed payment has been released."
    if _feedback(ctx):
        text += f"\n\n**Feedback:** {_feedback(ctx)}"
    return FlowMessage(text)


def work_approved_admin(ctx: PromptContext) -> FlowMessage:
    prompt = ActionPrompt(
        title="🏦 **Final Payment Pending**",
        subtitle="Release the final payment to the influencer or refund it:",
        visible_to=VisibleTo.ADMIN,
        flow_state=ctx.target,
        message_type="admin_final_payment",
        buttons=[
            _button("release_final", "Release Final Payment", ButtonStyle.SUCCESS),
            _button("refund_final", "Refund Final Payment", ButtonStyle.DANGER),
        ],
    )
    text = "🎉 **Work Approved**\n\nThe work has been approved. The final payment will be released by the platform."
    if _feedback(ctx):
        text += f"\n\n**Feedback:** {_feedback(ctx)}"
    return FlowMessage(text, prompt)


def final_work_rejected(ctx: PromptContext) -> FlowMessage:
    text = "❌ **Work Rejected**\n\nThe brand owner has rejected the final submission. The chat is now closed."
    if _feedback(ctx):
        text += f"\n\n**Feedback:** {_feedback(ctx)}"
    return FlowMessage(text)


# =========================================================================
# ADMIN
# =========================================================================

def brand_payment_received(ctx: PromptContext) -> FlowMessage:
    b = ctx.breakdown
    prompt = ActionPrompt(
        title="🏦 **Advance Payment**",
        subtitle="Release the advance to the influencer so work can begin:",
        visible_to=VisibleTo.ADMIN,
        flow_state=ctx.target,
        message_type="admin_advance_payment",
        buttons=[_button("release_advance", "Release Advance", ButtonStyle.SUCCESS)],
        payment_breakdown=b,
    )
    return FlowMessage(
        f"💰 **Payment Received by Platform**\n\nTotal: **{b.display.total}**\n"
        f"Commission ({b.commission_percentage}%): **{b.display.commission}**\n"
        f"Net to influencer: **{b.display.net}**\n"
        f"Advance ({b.advance_percentage}%): **{b.display.advance}**\n"
        f"Final: **{b.display.final}**",
        prompt,
        MessageTypeDB.SYSTEM_PAYMENT_UPDATE,
    )


def advance_released(ctx: PromptContext) -> FlowMessage:
    amount = format_inr(ctx.amount_paise or 0)
    return FlowMessage(
        f"✅ **Advance Payment Released**\n\nAn advance of **{amount}** has been paid to the influencer. "
        f"Work can now begin.",
        _submit_prompt(ctx, "submit_work", "📤 **Submit Work**", "Submit your work when it is ready for review:"),
        MessageTypeDB.SYSTEM_PAYMENT_UPDATE,
    )


def final_released(ctx: PromptContext) -> FlowMessage:
    amount = format_inr(ctx.amount_paise or 0)
    return FlowMessage(
        f"✅ **Final Payment Released**\n\nThe final payment of **{amount}** has been paid to the influencer. "
        f"The collaboration is complete.",
        message_type=MessageTypeDB.SYSTEM_PAYMENT_UPDATE,
    )


def final_refunded(ctx: PromptContext) -> FlowMessage:
    amount = format_inr(ctx.amount_paise or 0)
    reason = getattr(ctx.payload, "reason", None)
    text = f"↩️ **Final Payment Refunded**\n\n**{amount}** has been refunded to the brand owner."
    if reason:
        text += f"\n\n**Reason:** {reason}"
    return FlowMessage(text, message_type=MessageTypeDB.SYSTEM_PAYMENT_UPDATE)


def escrow_refunded(ctx: PromptContext) -> FlowMessage:
    amount = format_inr(ctx.amount_paise or 0)
    reason = getattr(ctx.payload, "reason", None)
    text = f"↩️ **Escrow Refunded**\n\n**{amount}** held in escrow has been refunded to the brand owner."
    if reason:
        text += f"\n\n**Reason:** {reason}"
    return FlowMessage(text, message_type=MessageTypeDB.SYSTEM_PAYMENT_UPDATE)


def force_closed(ctx: PromptContext) -> FlowMessage:
    reason = getattr(ctx.payload, "reason", None)
    text = "🔒 **Conversation Closed**\n\nThis conversation has been closed by the platform."
    if reason:
        text += f"\n\n**Reason:** {reason}"
    if ctx.amount_paise:
        text += f"\n\n**{format_inr(ctx.amount_paise)}** held in escrow has been refunded to the brand owner."
    return FlowMessage(text, message_type=MessageTypeDB.SYSTEM_PAYMENT_UPDATE)


BUILDERS: Dict[str, Builder] = {
    "connection_request": connection_request,
    "connection_accepted": connection_accepted,
    "connection_rejected": connection_rejected,
    "project_details_sent": project_details_sent,
    "project_accepted": project_accepted,
    "project_rejected": project_rejected,
    "price_offered": price_offered,
    "price_accepted": price_accepted,
    "price_rejected": price_rejected,
    "negotiation_requested": negotiation_requested,
    "negotiation_accepted": negotiation_accepted,
    "negotiation_rejected": negotiation_rejected,
    "negotiated_price_sent": negotiated_price_sent,
    "negotiated_price_rejected": negotiated_price_rejected,
    "negotiated_price_accepted": negotiated_price_accepted,
    "payment_order_created": payment_order_created,
    "payment_confirmed": payment_confirmed,
    "start_work_prompt": start_work_prompt,
    "work_started": work_started,
    "work_submitted": work_submitted,
    "revision_requested": revision_requested,
    "work_approved": work_approved,
    "work_approved_admin": work_approved_admin,
    "final_work_rejected": final_work_rejected,
    "brand_payment_received": brand_payment_received,
    "advance_released": advance_released,
    "final_released": final_released,
    "final_refunded": final_refunded,
    "escrow_refunded": escrow_refunded,
    "force_closed": force_closed,
}


def build(name: str, ctx: PromptContext) -> FlowMessage:
    return BUILDERS[name](ctx)
