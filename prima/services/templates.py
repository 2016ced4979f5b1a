"""Indonesian message templates for prompts, clarifications and acknowledgements."""

from prima.models import ConversationContext
from prima.services.keyword_matcher import Intent

DEFAULT_SUBJECT_NAME = "Bapak/Ibu"
SIGNATURE = "💙 Tim PRIMA"


def _name(subject_name: str | None) -> str:
    return subject_name or DEFAULT_SUBJECT_NAME


def verification_prompt(subject_name: str | None = None, ttl_hours: int = 48) -> str:
    return (
        f"🏥 *PRIMA - Verifikasi WhatsApp*\n\n"
        f"Halo {_name(subject_name)}!\n\n"
        f"Apakah Anda bersedia menerima pengingat kesehatan dari PRIMA melalui WhatsApp?\n\n"
        f"*Balas dengan SALAH SATU kata ini saja:*\n"
        f"✅ *YA*\n"
        f"❌ *TIDAK*\n\n"
        f"⚠️ PENTING: Hanya balas dengan kata *YA* atau *TIDAK* saja (tanpa kata lain)\n\n"
        f"Pesan ini akan kadaluarsa dalam {ttl_hours} jam.\n\n"
        f"Terima kasih! {SIGNATURE}"
    )


def confirmation_prompt(subject_name: str | None = None, reminder_message: str | None = None) -> str:
    text = f"📋 *Pengingat PRIMA*\n\nHalo {_name(subject_name)}!\n\n"
    if reminder_message:
        text += f"{reminder_message}\n\n"
    text += (
        f"Silakan konfirmasi dengan membalas:\n"
        f"✅ *SUDAH* jika sudah dilakukan\n"
        f"⏰ *BELUM* jika belum dilakukan\n\n"
        f"{SIGNATURE}"
    )
    return text


def prompt(
    context: ConversationContext,
    subject_name: str | None = None,
    reminder_message: str | None = None,
    ttl_hours: int = 48,
) -> str:
    if context == ConversationContext.VERIFICATION:
        return verification_prompt(subject_name, ttl_hours)
    return confirmation_prompt(subject_name, reminder_message)


# Clarifications escalate: gentle, then explicit, then the same firm text every time after
_CLARIFICATIONS = {
    ConversationContext.VERIFICATION: (
        f"⚠️ Mohon balas dengan kata *YA* atau *TIDAK* saja (satu kata, tanpa kata lain)\n\n"
        f"Terima kasih! {SIGNATURE}",
        f"⚠️ PENTING: Balas hanya dengan SALAH SATU kata ini:\n\n"
        f"✅ *YA*\n❌ *TIDAK*\n\n"
        f"(Satu kata saja, tanpa tambahan kata lain)\n\n{SIGNATURE}",
        f"🔔 MOHON BALAS DENGAN TEPAT:\n\n"
        f"✅ Ketik kata *YA* saja - jika setuju\n"
        f"❌ Ketik kata *TIDAK* saja - jika tolak\n\n"
        f"⚠️ Hanya satu kata, tanpa kata lain\n\n{SIGNATURE}",
    ),
    ConversationContext.REMINDER_CONFIRMATION: (
        f"⚠️ Mohon balas dengan kata *SUDAH* atau *BELUM* saja (satu kata, tanpa kata lain)\n\n"
        f"Terima kasih! {SIGNATURE}",
        f"⚠️ PENTING: Balas hanya dengan SALAH SATU kata ini:\n\n"
        f"✅ *SUDAH*\n⏰ *BELUM*\n\n"
        f"(Satu kata saja, tanpa tambahan kata lain)\n\n{SIGNATURE}",
        f"🔔 MOHON BALAS DENGAN TEPAT:\n\n"
        f"✅ Ketik kata *SUDAH* saja - jika sudah selesai\n"
        f"⏰ Ketik kata *BELUM* saja - jika belum selesai\n\n"
        f"⚠️ Hanya satu kata, tanpa kata lain\n\n{SIGNATURE}",
    ),
}


def clarification(context: ConversationContext, attempt: int) -> str:
    """Clarification text for the given (1-based) invalid attempt."""
    texts = _CLARIFICATIONS[context]
    return texts[min(max(attempt, 1), len(texts)) - 1]


def acknowledgement(intent: Intent, subject_name: str | None = None) -> str:
    name = _name(subject_name)
    if intent == Intent.ACCEPT:
        return (
            f"Terima kasih {name}! ✅\n\n"
            f"Anda akan menerima pengingat dari relawan PRIMA.\n\n{SIGNATURE}"
        )
    if intent == Intent.DECLINE:
        return f"Baik {name}, terima kasih atas responsnya.\n\nSemoga sehat selalu! 🙏\n\n{SIGNATURE}"
    if intent == Intent.DONE:
        return f"Terima kasih {name}! ✅\n\nPengingat sudah dikonfirmasi selesai.\n\n{SIGNATURE}"
    if intent == Intent.NOT_YET:
        return (
            f"Baik {name}, jangan lupa selesaikan pengingat Anda ya! 📝\n\n"
            f"Kami akan mengingatkan lagi nanti.\n\n{SIGNATURE}"
        )
    raise ValueError(f"No acknowledgement for intent {intent}")


def retry_request(context: ConversationContext, subject_name: str | None = None) -> str:
    """Sent when a decisive reply could not be saved; asks the patient to send it again."""
    word = "*YA* atau *TIDAK*" if context == ConversationContext.VERIFICATION else "*SUDAH* atau *BELUM*"
    return (
        f"Mohon maaf {_name(subject_name)}, balasan Anda belum dapat kami proses.\n\n"
        f"Silakan kirim ulang balasan {word} beberapa saat lagi.\n\n{SIGNATURE}"
    )
