from app.services.rule_matcher import describe_candidates, get_enabled_auto_sell_rules, match_rule


class TestMatchRule:
    def test_exact_sku_rule_first_in_catalog_wins(self, make_rule):
        r1 = make_rule(name="R1", sku_text="100次", delivery_content="CODE-A")
        r2 = make_rule(name="R2", sku_text=None, delivery_content="CODE-B")

        assert match_rule([r1, r2], "paid", "100次") is r1
        assert match_rule([r1, r2], "paid", "200次") is r2

    def test_catalog_order_decides_not_specificity(self, make_rule):
        unrestricted = make_rule(name="any", sku_text=None)
        exact = make_rule(name="exact", sku_text="100次")

        assert match_rule([unrestricted, exact], "paid", "100次") is unrestricted

    def test_trigger_must_match(self, make_rule):
        confirmed = make_rule(name="c", trigger_on="confirmed")
        paid = make_rule(name="p", trigger_on="paid")

        assert match_rule([confirmed, paid], "paid", None) is paid
        assert match_rule([paid], "confirmed", None) is None

    def test_sku_comparison_is_trimmed_and_case_sensitive(self, make_rule):
        rule = make_rule(sku_text="  Pro ")

        assert match_rule([rule], "paid", "Pro") is rule
        assert match_rule([rule], "paid", " Pro  ") is rule
        assert match_rule([rule], "paid", "pro") is None
        assert match_rule([rule], "paid", "Pro Max") is None

    def test_sku_rule_does_not_match_order_without_sku(self, make_rule):
        rule = make_rule(sku_text="100次")
        assert match_rule([rule], "paid", None) is None

    def test_blank_rule_sku_means_unrestricted(self, make_rule):
        rule = make_rule(sku_text="   ")
        assert match_rule([rule], "paid", "anything") is rule

    def test_deterministic(self, make_rule):
        rules = [make_rule(name=f"r{i}", sku_text=s) for i, s in enumerate(["a", None, "b"])]
        picks = {match_rule(rules, "paid", "b").id for _ in range(5)}
        assert picks == {rules[1].id}


class TestEnabledRules:
    def test_filters_and_catalog_order(self, db, make_rule):
        r_any = make_rule(name="any")
        r_acc = make_rule(name="acc", account_id="acc-1")
        make_rule(name="other-acc", account_id="acc-2")
        r_item = make_rule(name="item", item_id="item-1")
        make_rule(name="other-item", item_id="item-2")
        make_rule(name="disabled", enabled=False)

        rules = get_enabled_auto_sell_rules(db, "acc-1", "item-1")
        assert [r.id for r in rules] == [r_any.id, r_acc.id, r_item.id]

    def test_unknown_item_only_admits_item_unrestricted(self, db, make_rule):
        r_any = make_rule(name="any")
        make_rule(name="item", item_id="item-1")

        assert [r.id for r in get_enabled_auto_sell_rules(db, "acc-1")] == [r_any.id]


def test_describe_candidates(make_rule):
    rules = [make_rule(name="A", sku_text="1次"), make_rule(name="B", trigger_on="confirmed")]
    text = describe_candidates(rules)
    assert '"A"(sku:1次, trigger:paid)' in text
    assert '"B"(sku:any, trigger:confirmed)' in text
    assert describe_candidates([]) == "(none)"
