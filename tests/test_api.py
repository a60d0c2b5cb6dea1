import shutil

import pytest
from fastapi.testclient import TestClient

from aicore_lab.adapters import ObjectStoreFactory
from aicore_lab.main import app
from aicore_lab.models import Deployment, Execution, ExecutionStatus, ObjectStoreSecret
from aicore_lab.serving import GREET_LOADED, GREET_NOT_LOADED

from .test_serving import SAMPLE

SECRET = {
    "name": "default",
    "type": "S3",
    "bucket": "hcp-bucket",
    "pathPrefix": "tutorial",
    "region": "eu-central-1",
    "data": {"AWS_ACCESS_KEY_ID": "key", "AWS_SECRET_ACCESS_KEY": "secret"},
}


@pytest.fixture
def client(lab_env):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def registered(client, lab_env, housing_csv, training_yaml, serving_yaml):
    """Secret, both executables and the uploaded training dataset."""
    assert client.post("/v2/admin/objectStoreSecrets", json=SECRET).status_code == 201
    store = ObjectStoreFactory.create(
        "local",
        ObjectStoreSecret(name="default", bucket="hcp-bucket"),
        base_path=lab_env["OBJECT_STORE_PATH"],
    )
    store.upload(str(housing_csv), "tutorial/data/train.csv")

    for template in (training_yaml, serving_yaml):
        response = client.post(
            "/v2/admin/executables",
            content=template,
            headers={"Content-Type": "application/yaml"},
        )
        assert response.status_code == 201, response.text

    response = client.post(
        "/v2/lm/artifacts",
        json={
            "name": "House Price Dataset",
            "kind": "dataset",
            "url": "ai://default/data",
            "scenarioId": "learning-datalines",
            "description": "Tutorial training data",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _training_configuration(client, dataset_id, depth="3"):
    return client.post(
        "/v2/lm/configurations",
        json={
            "name": "House Price conf",
            "executableId": "code-pipeline",
            "scenarioId": "learning-datalines",
            "parameterBindings": [{"key": "DT_MAX_DEPTH", "value": depth}],
            "inputArtifactBindings": [{"key": "housedataset", "artifactId": dataset_id}],
        },
    )


def _run_execution(client, dataset_id):
    configuration_id = _training_configuration(client, dataset_id).json()["id"]
    response = client.post("/v2/lm/executions", json={"configurationId": configuration_id})
    assert response.status_code == 202, response.text
    return client.get(f"/v2/lm/executions/{response.json()['id']}").json()


def _deploy(client, model_id):
    response = client.post(
        "/v2/lm/configurations",
        json={
            "name": "server conf",
            "executableId": "server-pipeline",
            "scenarioId": "learning-datalines",
            "inputArtifactBindings": [{"key": "housepricemodel", "artifactId": model_id}],
        },
    )
    assert response.status_code == 201, response.text
    response = client.post(
        "/v2/lm/deployments", json={"configurationId": response.json()["id"]}
    )
    assert response.status_code == 202, response.text
    return client.get(f"/v2/lm/deployments/{response.json()['id']}").json()


class TestHealth:
    @staticmethod
    def test_root(client):
        body = client.get("/").json()

        assert body["name"] == "AI Core Lab"
        assert body["status"] == "running"

    @staticmethod
    def test_health(client):
        assert client.get("/health").json()["status"] == "healthy"


class TestSecrets:
    @staticmethod
    def test_credentials_are_not_returned(client):
        # When
        created = client.post("/v2/admin/objectStoreSecrets", json=SECRET)
        listed = client.get("/v2/admin/objectStoreSecrets").json()

        # Then
        assert created.status_code == 201
        assert listed["count"] == 1
        (secret,) = listed["resources"]
        assert secret["name"] == "default"
        assert secret["pathPrefix"] == "tutorial"
        assert "data" not in secret

    @staticmethod
    def test_duplicate(client):
        client.post("/v2/admin/objectStoreSecrets", json=SECRET)

        assert client.post("/v2/admin/objectStoreSecrets", json=SECRET).status_code == 409

    @staticmethod
    def test_scoped_by_resource_group(client):
        client.post(
            "/v2/admin/objectStoreSecrets", json=SECRET, headers={"AI-Resource-Group": "team-a"}
        )

        assert client.get("/v2/admin/objectStoreSecrets").json()["count"] == 0
        listed = client.get(
            "/v2/admin/objectStoreSecrets", headers={"AI-Resource-Group": "team-a"}
        ).json()
        assert listed["count"] == 1

    @staticmethod
    @pytest.mark.parametrize("resource_group", ["..", "team/a", "-team"])
    def test_invalid_resource_group(client, resource_group):
        response = client.get(
            "/v2/admin/objectStoreSecrets", headers={"AI-Resource-Group": resource_group}
        )

        assert response.status_code == 400

    @staticmethod
    def test_delete(client):
        client.post("/v2/admin/objectStoreSecrets", json=SECRET)

        assert client.delete("/v2/admin/objectStoreSecrets/default").status_code == 200
        assert client.delete("/v2/admin/objectStoreSecrets/default").status_code == 404

    @staticmethod
    def test_path_prefix_escape(client):
        response = client.post(
            "/v2/admin/objectStoreSecrets", json={**SECRET, "pathPrefix": "../etc"}
        )

        assert response.status_code == 400


class TestExecutables:
    @staticmethod
    def test_scenarios_and_executables(client, registered):
        # When
        scenarios = client.get("/v2/lm/scenarios").json()
        executables = client.get("/v2/lm/scenarios/learning-datalines/executables").json()
        workflow = client.get(
            "/v2/lm/scenarios/learning-datalines/executables/code-pipeline"
        ).json()

        # Then
        assert scenarios["count"] == 1
        assert scenarios["resources"][0]["id"] == "learning-datalines"
        assert executables["count"] == 2
        assert workflow["kind"] == "workflow"
        assert workflow["parameters"][0]["name"] == "DT_MAX_DEPTH"

    @staticmethod
    def test_invalid_template(client):
        response = client.post("/v2/admin/executables", content="kind: Pod\n")

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["message"] == "Template validation failed"
        assert detail["errors"]

    @staticmethod
    def test_template_not_utf8(client, training_yaml):
        response = client.post(
            "/v2/admin/executables",
            content=training_yaml.encode("utf-16"),
            headers={"Content-Type": "application/yaml"},
        )

        assert response.status_code == 400
        assert "UTF-8" in response.json()["detail"]["message"]

    @staticmethod
    def test_template_with_mistyped_section(client, training_yaml):
        broken = training_yaml.replace(
            "      inputs:\n        artifacts:\n          - name: housedataset\n"
            "            path: /app/data/\n",
            "      inputs:\n        - housedataset\n",
        )
        assert broken != training_yaml

        response = client.post("/v2/admin/executables", content=broken)

        assert response.status_code == 400
        assert "inputs must be a mapping" in response.json()["detail"]["message"]

    @staticmethod
    def test_unknown_scenario(client):
        assert client.get("/v2/lm/scenarios/nope/executables").status_code == 404


class TestArtifacts:
    @staticmethod
    def test_list_and_get(client, registered):
        listed = client.get("/v2/lm/artifacts", params={"kind": "dataset"}).json()
        fetched = client.get(f"/v2/lm/artifacts/{registered}").json()

        assert listed["count"] == 1
        assert fetched["url"] == "ai://default/data"
        assert fetched["scenarioId"] == "learning-datalines"

    @staticmethod
    def test_unknown_secret(client, registered):
        response = client.post(
            "/v2/lm/artifacts",
            json={
                "name": "data",
                "kind": "dataset",
                "url": "ai://elsewhere/data",
                "scenarioId": "learning-datalines",
            },
        )

        assert response.status_code == 400
        assert "elsewhere" in response.json()["detail"]["message"]

    @staticmethod
    def test_unknown_scenario(client, registered):
        response = client.post(
            "/v2/lm/artifacts",
            json={
                "name": "data",
                "kind": "dataset",
                "url": "ai://default/data",
                "scenarioId": "nope",
            },
        )

        assert response.status_code == 400

    @staticmethod
    def test_other_resource_group(client, registered):
        response = client.get(
            f"/v2/lm/artifacts/{registered}", headers={"AI-Resource-Group": "team-a"}
        )

        assert response.status_code == 404


class TestConfigurations:
    @staticmethod
    def test_create_and_get(client, registered):
        created = _training_configuration(client, registered)
        fetched = client.get(f"/v2/lm/configurations/{created.json()['id']}").json()

        assert created.status_code == 201
        assert fetched["executableId"] == "code-pipeline"
        assert fetched["inputArtifactBindings"] == [
            {"key": "housedataset", "artifactId": registered}
        ]
        assert client.get("/v2/lm/configurations").json()["count"] == 1

    @staticmethod
    def test_binding_errors(client, registered):
        response = client.post(
            "/v2/lm/configurations",
            json={
                "name": "broken",
                "executableId": "code-pipeline",
                "scenarioId": "learning-datalines",
            },
        )

        assert response.status_code == 400
        errors = response.json()["detail"]["errors"]
        assert "Input artifact 'housedataset' is not bound" in errors
        assert "Parameter 'DT_MAX_DEPTH' has no value and no default" in errors

    @staticmethod
    def test_unknown_executable(client, registered):
        response = client.post(
            "/v2/lm/configurations",
            json={"name": "x", "executableId": "nope", "scenarioId": "learning-datalines"},
        )

        assert response.status_code == 400


class TestLifecycle:
    @staticmethod
    def test_train_deploy_predict(client, registered):
        # Given
        execution = _run_execution(client, registered)

        # Then
        assert execution["status"] == "COMPLETED", execution["statusMessage"]
        assert execution["metrics"]["max_depth"] == 3
        (model,) = execution["outputArtifacts"]
        assert model["kind"] == "model"
        assert model["url"] == f"ai://default/{execution['id']}/housemodel"

        models = client.get(
            "/v2/lm/artifacts", params={"executionId": execution["id"]}
        ).json()
        assert models["count"] == 1

        # When
        deployment = _deploy(client, model["id"])

        # Then
        assert deployment["status"] == "RUNNING", deployment["statusMessage"]
        assert deployment["deploymentUrl"].endswith(
            f"/v2/inference/deployments/{deployment['id']}"
        )

        base = f"/v2/inference/deployments/{deployment['id']}"
        greet = client.get(f"{base}/v2/greet")
        assert greet.status_code == 200
        assert greet.text == GREET_LOADED

        prediction = client.post(f"{base}/v2/predict", json=SAMPLE)
        assert prediction.status_code == 200
        assert prediction.headers["content-type"].startswith("text/plain")
        float(prediction.text)

        assert client.post(f"{base}/v2/predict", json={"MedInc": 1}).status_code == 422
        assert client.delete(f"/v2/lm/deployments/{deployment['id']}").status_code == 409

        # When
        stopped = client.patch(
            f"/v2/lm/deployments/{deployment['id']}", json={"targetStatus": "STOPPED"}
        )

        # Then
        assert stopped.status_code == 200
        assert client.get(f"{base}/v2/greet").status_code == 503
        assert client.delete(f"/v2/lm/deployments/{deployment['id']}").status_code == 200

    @staticmethod
    def test_failed_execution(client, registered):
        configuration_id = _training_configuration(client, registered, depth="-1").json()["id"]

        response = client.post("/v2/lm/executions", json={"configurationId": configuration_id})
        execution = client.get(f"/v2/lm/executions/{response.json()['id']}").json()

        assert execution["status"] == "DEAD"
        assert "DT_MAX_DEPTH" in execution["statusMessage"]
        assert execution["outputArtifacts"] == []

    @staticmethod
    def test_execution_requires_workflow(client, registered):
        # Given
        model_id = client.post(
            "/v2/lm/artifacts",
            json={
                "name": "housemodel",
                "kind": "model",
                "url": "ai://default/models/house",
                "scenarioId": "learning-datalines",
            },
        ).json()["id"]
        configuration_id = client.post(
            "/v2/lm/configurations",
            json={
                "name": "server conf",
                "executableId": "server-pipeline",
                "scenarioId": "learning-datalines",
                "inputArtifactBindings": [{"key": "housepricemodel", "artifactId": model_id}],
            },
        ).json()["id"]

        # When
        response = client.post("/v2/lm/executions", json={"configurationId": configuration_id})

        # Then
        assert response.status_code == 400
        assert "serving executable" in response.json()["detail"]["message"]

    @staticmethod
    def test_execution_status_changes(client, registered):
        execution = _run_execution(client, registered)
        path = f"/v2/lm/executions/{execution['id']}"

        assert client.patch(path, json={"targetStatus": "STOPPED"}).status_code == 409
        assert client.patch(path, json={"targetStatus": "RUNNING"}).status_code == 400
        assert client.get("/v2/lm/executions").json()["count"] == 1
        assert client.delete(path).status_code == 200
        assert client.get(path).status_code == 404

    @staticmethod
    def test_deployment_needs_serving_executable(client, registered):
        configuration_id = _training_configuration(client, registered).json()["id"]

        response = client.post("/v2/lm/deployments", json={"configurationId": configuration_id})

        assert response.status_code == 400

    @staticmethod
    def test_unknown_deployment(client):
        assert client.get("/v2/inference/deployments/nope/v2/greet").status_code == 404
        assert client.get("/v2/lm/deployments/nope").status_code == 404


class TestUnfinished:
    @staticmethod
    def test_running_execution(client, storage):
        # Given
        execution = Execution(
            configuration_id="c1", scenario_id="learning-datalines",
            executable_id="code-pipeline", status=ExecutionStatus.RUNNING,
        )
        storage.save_execution(execution)
        path = f"/v2/lm/executions/{execution.id}"

        # Then
        assert client.delete(path).status_code == 409
        assert client.patch(path, json={"targetStatus": "STOPPED"}).status_code == 200
        stopping = client.get(path).json()
        assert stopping["status"] == "STOPPING"
        assert stopping["targetStatus"] == "STOPPED"
        assert client.delete(path).status_code == 409

    @staticmethod
    def test_stop_unstarted_execution(client, storage):
        execution = Execution(
            configuration_id="c1", scenario_id="learning-datalines", executable_id="code-pipeline"
        )
        storage.save_execution(execution)
        path = f"/v2/lm/executions/{execution.id}"

        assert client.patch(path, json={"targetStatus": "STOPPED"}).status_code == 200
        assert client.get(path).json()["status"] == "STOPPED"
        assert client.delete(path).status_code == 200

    @staticmethod
    @pytest.mark.parametrize(
        "deployment_status",
        [
            pytest.param(ExecutionStatus.PENDING, id="pending"),
            pytest.param(ExecutionStatus.DEAD, id="dead"),
            pytest.param(ExecutionStatus.STOPPED, id="stopped"),
        ],
    )
    def test_inference_needs_running_deployment(client, storage, deployment_status):
        # Given
        deployment = Deployment(
            configuration_id="c1", scenario_id="learning-datalines",
            executable_id="server-pipeline", status=deployment_status,
        )
        storage.save_deployment(deployment)
        base = f"/v2/inference/deployments/{deployment.id}"

        # Then
        assert client.get(f"{base}/v2/greet").status_code == 503
        assert client.post(f"{base}/v2/predict", json=SAMPLE).status_code == 503

    @staticmethod
    def test_running_deployment_cannot_be_deleted(client, storage):
        deployment = Deployment(
            configuration_id="c1", scenario_id="learning-datalines",
            executable_id="server-pipeline", status=ExecutionStatus.RUNNING,
        )
        storage.save_deployment(deployment)

        response = client.delete(f"/v2/lm/deployments/{deployment.id}")

        assert response.status_code == 409
        assert storage.load_deployment(deployment.id) is not None

    @staticmethod
    def test_model_load_is_retried(client, storage, tmp_path, trained_model_path):
        # Given
        model_path = tmp_path / "late" / "model.pkl"
        deployment = Deployment(
            configuration_id="c1", scenario_id="learning-datalines",
            executable_id="server-pipeline", status=ExecutionStatus.RUNNING,
            model_path=str(model_path),
        )
        storage.save_deployment(deployment)
        base = f"/v2/inference/deployments/{deployment.id}"

        # When
        before = client.get(f"{base}/v2/greet")
        predict_before = client.post(f"{base}/v2/predict", json=SAMPLE)
        model_path.parent.mkdir()
        shutil.copy(trained_model_path, model_path)
        after = client.get(f"{base}/v2/greet")

        # Then
        assert before.text == GREET_NOT_LOADED
        assert predict_before.status_code == 503
        assert after.text == GREET_LOADED
        assert client.post(f"{base}/v2/predict", json=SAMPLE).status_code == 200
