from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .proofs import DocumentProof, VerificationResult


class AnchorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_hash: str = Field(validation_alias=AliasChoices("documentHash", "contentHash"))
    did: str = Field(validation_alias=AliasChoices("did", "identity"))
    signature: str


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_hash: str = Field(validation_alias=AliasChoices("documentHash", "contentHash"))


class AnchoredProof(BaseModel):
    documentHash: str
    transactionId: str
    consensusTimestamp: str
    issuerDid: str
    anchoredAt: Optional[str] = None

    @classmethod
    def from_proof(cls, proof: DocumentProof) -> 'AnchoredProof':
        return cls(
            documentHash=proof.content_hash,
            transactionId=proof.log_transaction_id,
            consensusTimestamp=proof.consensus_timestamp,
            issuerDid=proof.issuer_identity,
            anchoredAt=proof.created_at.isoformat() if proof.created_at else None,
        )


class AnchorResponse(BaseModel):
    message: str
    proof: AnchoredProof


class VerifiedProof(BaseModel):
    documentHash: str
    issuerDid: str
    signature: str
    consensusTimestamp: str
    transactionId: str
    organizationName: Optional[str] = None


class VerifyResponse(BaseModel):
    status: str
    message: str
    proof: Optional[VerifiedProof] = None
    isTrustedIssuer: Optional[bool] = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> 'VerifyResponse':
        if not result.is_verified():
            # Deliberately identical for "never anchored" and "unverifiable"
            return cls(
                status=result.outcome.value,
                message="This document could not be verified.",
            )
        proof = result.proof
        return cls(
            status=result.outcome.value,
            message="This document is authentic and was verified on the consensus log.",
            proof=VerifiedProof(
                documentHash=proof.content_hash,
                issuerDid=proof.issuer_identity,
                signature=result.signature,
                consensusTimestamp=proof.consensus_timestamp,
                transactionId=proof.log_transaction_id,
                organizationName=result.organization_name,
            ),
            isTrustedIssuer=result.is_trusted_issuer,
        )
