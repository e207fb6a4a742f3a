"""Share message rendering."""

from pydantic import BaseModel

from vaultkeeper.config.schema import DEFAULT_BODY, DEFAULT_SUBJECT, MessageConfig


class ShareMessage(BaseModel):
    """A rendered message for one recipient."""

    recipient: str
    subject: str
    body: str


class MessageTemplate(BaseModel):
    """Subject and body templates for share messages.

    Templates use ``str.format`` placeholders: ``{action}``, ``{cluster}``,
    ``{index}``, ``{total}``, ``{identifier}``, ``{recipient}``, ``{share}``.
    """

    subject: str = DEFAULT_SUBJECT
    body: str = DEFAULT_BODY

    @classmethod
    def from_config(cls, config: MessageConfig) -> "MessageTemplate":
        return cls(subject=config.subject, body=config.body)

    def render(
        self,
        *,
        recipient: str,
        share: str,
        index: int,
        total: int,
        identifier: str,
        cluster: str,
        action: str,
    ) -> ShareMessage:
        fields = {
            "action": action,
            "cluster": cluster,
            "index": index,
            "total": total,
            "identifier": identifier,
            "recipient": recipient,
            "share": share,
        }
        return ShareMessage(
            recipient=recipient,
            subject=self.subject.format(**fields),
            body=self.body.format(**fields),
        )
