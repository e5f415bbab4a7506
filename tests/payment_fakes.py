from app.application.ports.payment_gateway import CheckoutSession, PushRequest


class ScriptedStatuses:
    """Successive get_status answers; exceptions are raised, the last answer repeats."""

    def __init__(self, statuses):
        self.statuses = list(statuses) or ["pending"]
        self.status_calls = 0

    async def get_status(self, reference):
        self.status_calls += 1
        value = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(value, Exception):
            raise value
        return value


class FakePushGateway(ScriptedStatuses):
    def __init__(self, statuses=(), reject=None):
        super().__init__(statuses)
        self.reject = reject
        self.pushes = []

    async def initiate(self, phone, amount, reference, description):
        if self.reject is not None:
            raise self.reject
        self.pushes.append((phone, amount, reference))
        return PushRequest(reference=f"ws_CO_{len(self.pushes)}", customer_message="Enter your M-Pesa PIN")


class FakeRedirectGateway(ScriptedStatuses):
    def __init__(self, statuses=()):
        super().__init__(statuses)
        self.sessions = []

    async def create_session(self, amount, reference, description):
        self.sessions.append((amount, reference))
        n = len(self.sessions)
        return CheckoutSession(reference=f"cs_test_{n}", url=f"https://checkout.example/cs_test_{n}")


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, appointment_id, attempt_id=None, gateway=None, success=True, details=None):
        self.entries.append((action, appointment_id, attempt_id, details or {}))

    def actions(self):
        return [e[0] for e in self.entries]


class FakeCallLinks:
    def provision(self, appointment):
        return f"https://meet.example/clinic-{appointment.id}"


